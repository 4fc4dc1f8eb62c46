"""OAuth token persistence for platform connections.

WHY: Adapters refresh access tokens shortly before they expire, and the
refreshed pair (platforms rotate refresh tokens too) must survive a
restart. The OAuth code exchange that creates the first token happens
elsewhere; this module only reads and writes what it produced.

HOW: A small JSON file keyed by platform name, guarded by a lock and
rewritten atomically on every change. File mode is 0600 because it holds
bearer credentials.

RULES:
- get_token() returns None when the platform is not connected
- save_token() replaces the platform's entry wholesale
- expires_at is an epoch timestamp in seconds
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredToken:
    """A platform connection's credential as persisted."""

    platform: str
    access_token: str
    refresh_token: Optional[str]
    expires_at: float
    account_name: Optional[str] = None
    account_id: Optional[str] = None


class TokenStore:
    """JSON-file backed credential store, one entry per platform."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            return json.load(f)

    def _write(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tokens-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_token(self, platform: str) -> Optional[StoredToken]:
        with self._lock:
            entry = self._read().get(platform)
        if entry is None:
            return None
        return StoredToken(**entry)

    def save_token(
        self,
        platform: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: float,
        account_name: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> StoredToken:
        token = StoredToken(
            platform=platform,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=float(expires_at),
            account_name=account_name,
            account_id=account_id,
        )
        with self._lock:
            data = self._read()
            data[platform] = asdict(token)
            self._write(data)
        logger.info("Saved %s token (expires at %.0f)", platform, token.expires_at)
        return token

    def delete_token(self, platform: str) -> bool:
        with self._lock:
            data = self._read()
            if platform not in data:
                return False
            del data[platform]
            self._write(data)
        logger.info("Deleted %s token", platform)
        return True
