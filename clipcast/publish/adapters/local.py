"""Save-to-disk adapter.

WHY: "Local" is a destination like any other so that it goes through the
same queue and state machine, but there is no platform behind it: the
rendered file is the result.

HOW: No credential is needed. initiate_publish() copies the rendered file
into output_dir when one is configured (otherwise the renderer's output
location is kept) and returns the final path as the job id.
poll_status() reports immediate success.
"""

from __future__ import annotations

import asyncio
import logging
import math
import shutil
from pathlib import Path
from typing import Any, Optional, Union

from clipcast.errors import CredentialError, TerminalPlatformRejection
from clipcast.publish.adapters.base import (
    Credential,
    PlatformAdapter,
    ProgressCallback,
    PublishStatus,
    RefreshedToken,
)
from clipcast.publish.platforms import PublishContent

logger = logging.getLogger(__name__)


class LocalAdapter(PlatformAdapter):
    platform = "local"
    requires_credential = False

    def __init__(self, *args: Any, output_dir: Optional[Union[str, Path]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.output_dir = Path(output_dir) if output_dir is not None else None

    async def get_valid_credential(self, force_refresh: bool = False) -> Credential:
        return Credential(access_token="", expires_at=math.inf)

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        raise CredentialError("Local destination has no credentials")

    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        source = content.video_url
        if source.startswith("file://"):
            source = source[len("file://"):]

        if self.output_dir is None:
            result = source
        else:
            src = Path(source)
            if not src.is_file():
                raise TerminalPlatformRejection("Rendered file not found: {}".format(src))
            self.output_dir.mkdir(parents=True, exist_ok=True)
            dest = self.output_dir / src.name
            await asyncio.to_thread(shutil.copy2, src, dest)
            result = str(dest)
            logger.info("Saved %s", dest)

        if on_progress:
            on_progress(100.0)
        return result

    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        return PublishStatus(terminal=True, success=True, processing_progress=100.0, message=job_id)
