"""Platform adapter contract, credential handling and HTTP error mapping.

WHY: Every destination speaks a different publish protocol, but the
scheduler should drive all of them the same way: get a valid credential,
start the publish, poll until the platform says it is done. Credential
refresh and HTTP error classification are the same for every platform,
so they live here once.

HOW: PlatformAdapter is an ABC. Subclasses implement _refresh(),
initiate_publish() and poll_status(). get_valid_credential() reads the
TokenStore, refreshes through _refresh() when less than
TOKEN_REFRESH_THRESHOLD_S of lifetime remains, and saves the result.
_request() wraps httpx so that network failures, 429 and 5xx become
TransientNetworkError and other 4xx become TerminalPlatformRejection.

RULES:
- Adapters own an httpx.AsyncClient unless one is injected; aclose() it
- A missing token or a failed refresh raises CredentialError
- initiate_publish() returns the platform's job id for poll_status()
- poll_status() never sleeps; the scheduler owns the poll cadence
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from clipcast.config import TOKEN_REFRESH_THRESHOLD_S
from clipcast.errors import (
    ConfigurationError,
    CredentialError,
    TerminalPlatformRejection,
    TransientNetworkError,
)
from clipcast.publish.platforms import PublishContent
from clipcast.publish.tokens import StoredToken, TokenStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def is_remote_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


@dataclass(frozen=True)
class Credential:
    """A usable access token for one platform."""

    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None
    account_name: Optional[str] = None
    account_id: Optional[str] = None

    def remaining_s(self, now: float) -> float:
        return self.expires_at - now

    @classmethod
    def from_stored(cls, token: StoredToken) -> Credential:
        return cls(
            access_token=token.access_token,
            expires_at=token.expires_at,
            refresh_token=token.refresh_token,
            account_name=token.account_name,
            account_id=token.account_id,
        )


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    refresh_token: Optional[str]
    expires_in_s: float


@dataclass(frozen=True)
class PublishStatus:
    """One poll result.

    RULES:
    - terminal=False means keep polling; success is meaningless then
    - processing_progress is 0-100
    """

    terminal: bool
    success: bool = False
    video_id: Optional[str] = None
    processing_progress: float = 0.0
    message: Optional[str] = None


class PlatformAdapter(abc.ABC):
    """Base class for one destination's publish protocol.

    Subclasses set ``platform`` (the TokenStore key) and implement the
    three abstract methods.
    """

    platform: str = ""
    requires_credential = True

    def __init__(
        self,
        token_store: Optional[TokenStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        refresh_threshold_s: float = TOKEN_REFRESH_THRESHOLD_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token_store = token_store
        self.refresh_threshold_s = refresh_threshold_s
        self._clock = clock
        self._client = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=30.0))
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PlatformAdapter:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and classify failures.

        Raises:
            TransientNetworkError: Connection problems, timeouts, 429 or 5xx.
            TerminalPlatformRejection: Any other non-2xx response.
        """
        try:
            resp = await self._http().request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientNetworkError(
                "{} {} failed: {}".format(method, url, exc)
            ) from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientNetworkError(
                "{} returned {}: {}".format(self.platform or "platform", resp.status_code, resp.text),
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise TerminalPlatformRejection(
                "{} rejected request ({}): {}".format(
                    self.platform or "platform", resp.status_code, resp.text
                ),
                status_code=resp.status_code,
            )
        return resp

    # ------------------------------------------------------------------
    # Source video
    # ------------------------------------------------------------------

    async def _source_size(self, video_url: str) -> int:
        """Byte size of the rendered video (HEAD for URLs, stat for paths)."""
        if not is_remote_url(video_url):
            return await asyncio.to_thread(os.path.getsize, video_url)
        resp = await self._request("HEAD", video_url)
        length = resp.headers.get("Content-Length")
        if not length:
            raise TerminalPlatformRejection(
                "Rendered video at {} has no Content-Length".format(video_url)
            )
        return int(length)

    async def _read_chunk(self, video_url: str, start: int, end: int) -> bytes:
        """Bytes start..end (inclusive) of the rendered video."""
        if not is_remote_url(video_url):
            def read() -> bytes:
                with open(video_url, "rb") as f:
                    f.seek(start)
                    return f.read(end - start + 1)
            return await asyncio.to_thread(read)
        resp = await self._request(
            "GET", video_url, headers={"Range": "bytes={}-{}".format(start, end)}
        )
        return resp.content

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_valid_credential(self, force_refresh: bool = False) -> Credential:
        """Return a credential with more than the refresh threshold left.

        WHY: Platforms reject expired tokens mid-upload; refreshing a few
        minutes early avoids that without refreshing on every call.

        RULES:
        - Cached token is used if remaining lifetime > refresh threshold
          and force_refresh is False
        - Otherwise refresh, persist the new pair, and return it
        - Raises CredentialError when not connected or refresh fails
        """
        if self.token_store is None:
            raise CredentialError("No token store configured for {}".format(self.platform))
        stored = self.token_store.get_token(self.platform)
        if stored is None:
            raise CredentialError("{} account is not connected".format(self.platform))

        credential = Credential.from_stored(stored)
        now = self._clock()
        if not force_refresh and credential.remaining_s(now) > self.refresh_threshold_s:
            return credential

        if not credential.refresh_token:
            raise CredentialError(
                "{} token expired and no refresh token is stored; reconnect the account".format(
                    self.platform
                )
            )

        logger.info("Refreshing %s access token", self.platform)
        try:
            refreshed = await self._refresh(credential.refresh_token)
        except (CredentialError, ConfigurationError):
            raise
        except (httpx.HTTPError, TransientNetworkError, TerminalPlatformRejection, KeyError, ValueError) as exc:
            raise CredentialError(
                "{} token refresh failed: {}".format(self.platform, exc)
            ) from exc

        saved = self.token_store.save_token(
            self.platform,
            refreshed.access_token,
            refreshed.refresh_token or credential.refresh_token,
            now + refreshed.expires_in_s,
            account_name=credential.account_name,
            account_id=credential.account_id,
        )
        return Credential.from_stored(saved)

    # ------------------------------------------------------------------
    # Platform protocol
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        """Exchange a refresh token for a new access token."""

    @abc.abstractmethod
    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Start publishing and return the platform's job id."""

    @abc.abstractmethod
    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        """Check the platform's status for a job started by initiate_publish()."""
