"""YouTube Data API adapter (resumable upload, then processing poll).

WHY: YouTube does not pull from a URL; the rendered video has to be
pushed in chunks through a resumable upload session. Large uploads hit
transient 5xx/429 responses routinely, so each chunk is retried on a
bounded backoff schedule instead of failing the whole post.

HOW: initiate_publish() opens a session (POST ?uploadType=resumable,
Location header = session URI) and PUTs the file in chunk_size pieces
with Content-Range headers. 308 means "continue from the Range header",
200/201 carries the new video id, which becomes the job id.
poll_status() reads processingDetails until processing succeeded or
failed.

RULES:
- Chunk size is 10 MB (a multiple of 256 KB, as the API requires)
- Per chunk: retry 429/5xx/403/network errors after each delay in
  retry_delays; a 401 forces one credential refresh and retries
- Retries are bounded; exhausting them raises TransientNetworkError
- Uploads are private, category 22, not made for kids
- video_url may be an http(s) URL (fetched with Range requests) or a
  local file path
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Sequence

from clipcast.config import (
    GOOGLE_TOKEN_URL,
    UPLOAD_RETRY_DELAYS_S,
    YOUTUBE_UPLOAD_URL,
    YOUTUBE_VIDEO_URL,
    load_client_credentials,
)
from clipcast.errors import (
    CredentialError,
    TerminalPlatformRejection,
    TransientNetworkError,
)
from clipcast.publish.adapters.base import (
    Credential,
    PlatformAdapter,
    ProgressCallback,
    PublishStatus,
    RefreshedToken,
)
from clipcast.publish.platforms import PublishContent

logger = logging.getLogger(__name__)

CHUNK_SIZE = 10 * 1024 * 1024
_RANGE_RE = re.compile(r"bytes=\d+-(\d+)")
_RETRYABLE_REJECTIONS = frozenset({403})


def parse_range_header(value: Optional[str]) -> Optional[int]:
    """Last byte acknowledged by a 308 response, or None."""
    if not value:
        return None
    match = _RANGE_RE.search(value)
    return int(match.group(1)) if match else None


class YouTubeAdapter(PlatformAdapter):
    platform = "youtube"

    def __init__(
        self,
        *args: Any,
        chunk_size: int = CHUNK_SIZE,
        retry_delays: Sequence[float] = UPLOAD_RETRY_DELAYS_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        privacy_status: str = "private",
        category_id: str = "22",
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_size = chunk_size
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self._sleep = sleep
        self.privacy_status = privacy_status
        self.category_id = category_id

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        client_id, client_secret = load_client_credentials("youtube")
        resp = await self._http().post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if resp.status_code != 200:
            raise CredentialError(
                "Google token refresh failed ({}): {}".format(resp.status_code, resp.text)
            )
        data = resp.json()
        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in_s=float(data.get("expires_in", 3600)),
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _open_session(
        self,
        credential: Credential,
        content: PublishContent,
        total_size: int,
    ) -> str:
        resp = await self._request(
            "POST",
            "{}?uploadType=resumable&part=snippet,status".format(YOUTUBE_UPLOAD_URL),
            headers={
                "Authorization": "Bearer {}".format(credential.access_token),
                "Content-Type": "application/json",
                "X-Upload-Content-Length": str(total_size),
                "X-Upload-Content-Type": "video/mp4",
            },
            json={
                "snippet": {
                    "title": content.title,
                    "description": content.description,
                    "tags": list(content.tags),
                    "categoryId": self.category_id,
                },
                "status": {
                    "privacyStatus": self.privacy_status,
                    "selfDeclaredMadeForKids": False,
                },
            },
        )
        upload_uri = resp.headers.get("Location")
        if not upload_uri:
            raise TerminalPlatformRejection("YouTube upload URI missing from response")
        return upload_uri

    async def _put_chunk(
        self,
        upload_uri: str,
        credential: Credential,
        chunk: bytes,
        start: int,
        end: int,
        total_size: int,
    ) -> tuple[Optional[str], int]:
        """Upload one chunk. Returns (video_id or None, next byte to send)."""
        resp = await self._request(
            "PUT",
            upload_uri,
            headers={
                "Authorization": "Bearer {}".format(credential.access_token),
                "Content-Length": str(len(chunk)),
                "Content-Range": "bytes {}-{}/{}".format(start, end, total_size),
            },
            content=chunk,
        )
        if resp.status_code == 308:
            last_byte = parse_range_header(resp.headers.get("Range"))
            next_byte = last_byte + 1 if last_byte is not None else end + 1
            if next_byte <= start:
                next_byte = end + 1
            return None, next_byte
        video_id = resp.json().get("id")
        if not video_id:
            raise TerminalPlatformRejection("YouTube upload completed but video ID missing")
        return video_id, total_size

    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if not content.title:
            raise TerminalPlatformRejection("YouTube requires a title")

        total_size = await self._source_size(content.video_url)
        upload_uri = await self._open_session(credential, content, total_size)
        logger.info("YouTube upload session opened for %d bytes", total_size)

        current = 0
        while current < total_size:
            end = min(current + self.chunk_size, total_size) - 1
            chunk = await self._read_chunk(content.video_url, current, end)

            last_error: Optional[Exception] = None
            for attempt, delay in enumerate(self.retry_delays):
                if attempt > 0 and delay > 0:
                    await self._sleep(delay)
                try:
                    video_id, current = await self._put_chunk(
                        upload_uri, credential, chunk, current, end, total_size
                    )
                except TransientNetworkError as exc:
                    last_error = exc
                    logger.warning("YouTube chunk attempt %d failed: %s", attempt + 1, exc)
                    continue
                except TerminalPlatformRejection as exc:
                    if exc.status_code == 401:
                        last_error = exc
                        credential = await self.get_valid_credential(force_refresh=True)
                        continue
                    if exc.status_code in _RETRYABLE_REJECTIONS:
                        last_error = exc
                        logger.warning("YouTube chunk attempt %d rejected: %s", attempt + 1, exc)
                        continue
                    raise
                if on_progress:
                    on_progress(100.0 * current / total_size)
                if video_id:
                    logger.info("YouTube upload complete: video %s", video_id)
                    return video_id
                break
            else:
                raise TransientNetworkError(
                    "YouTube upload failed after {} attempts: {}".format(
                        len(self.retry_delays), last_error
                    ),
                    status_code=getattr(last_error, "status_code", None),
                )

        raise TerminalPlatformRejection("YouTube upload did not return a video ID")

    # ------------------------------------------------------------------
    # Processing status
    # ------------------------------------------------------------------

    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        resp = await self._request(
            "GET",
            YOUTUBE_VIDEO_URL,
            params={"part": "processingDetails,status", "id": job_id},
            headers={"Authorization": "Bearer {}".format(credential.access_token)},
        )
        items = resp.json().get("items") or []
        if not items:
            return PublishStatus(terminal=False, message="video not visible yet")
        item = items[0]

        upload_status = (item.get("status") or {}).get("uploadStatus")
        if upload_status in ("failed", "rejected", "deleted"):
            reason = (item.get("status") or {}).get("rejectionReason") or (
                item.get("status") or {}
            ).get("failureReason")
            return PublishStatus(
                terminal=True,
                success=False,
                video_id=job_id,
                message="YouTube upload {}: {}".format(upload_status, reason or "no reason given"),
            )

        details = item.get("processingDetails") or {}
        processing = details.get("processingStatus")
        if processing == "succeeded":
            return PublishStatus(terminal=True, success=True, video_id=job_id, processing_progress=100.0)
        if processing in ("failed", "terminated"):
            return PublishStatus(
                terminal=True,
                success=False,
                video_id=job_id,
                message="YouTube processing {}".format(processing),
            )

        progress = 0.0
        parts = details.get("processingProgress") or {}
        total = parts.get("partsTotal")
        done = parts.get("partsProcessed")
        if total and done:
            progress = round(100.0 * float(done) / float(total))
        return PublishStatus(terminal=False, video_id=job_id, processing_progress=progress)
