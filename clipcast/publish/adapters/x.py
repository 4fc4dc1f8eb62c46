"""X (Twitter) adapter: chunked media upload, then a tweet.

WHY: X accepts video through the v1.1 media upload endpoint in three
steps (INIT, APPEND per chunk, FINALIZE) and transcodes it before it can
be attached to a tweet. The tweet itself goes through the v2 API. Both
are signed with OAuth 1.0a user context.

HOW: initiate_publish() runs INIT/APPEND/FINALIZE and returns the media
id. The tweet text is remembered per media id. poll_status() asks for
STATUS; once processing has succeeded it posts the tweet and reports the
tweet id as the video id. oauth1_header() builds the HMAC-SHA1
Authorization header.

RULES:
- The stored access_token is the OAuth token; refresh_token holds the
  OAuth token secret. Consumer key/secret come from X_CONSUMER_KEY and
  X_CONSUMER_SECRET
- OAuth 1.0a tokens do not expire; there is nothing to refresh
- Form and query parameters are part of the signature; multipart bodies
  and JSON bodies are not
- processing_info state failed is terminal; succeeded (or no
  processing_info at all) tweets; pending/in_progress keeps polling
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
import secrets
import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from clipcast.config import X_TWEET_URL, X_UPLOAD_URL, load_client_credentials
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

X_CHUNK_SIZE = 4 * 1024 * 1024


def _pct(value: str) -> str:
    return quote(str(value), safe="-._~")


def oauth1_header(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: str,
    token_secret: str,
    params: Optional[Mapping[str, Any]] = None,
    nonce: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> str:
    """Authorization header value for an OAuth 1.0a HMAC-SHA1 request.

    ``url`` must not carry a query string; pass query and form parameters
    through ``params`` so they are signed.
    """
    oauth = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
        "oauth_token": token,
        "oauth_version": "1.0",
    }
    pairs = [(_pct(k), _pct(v)) for k, v in list(oauth.items()) + list((params or {}).items())]
    param_string = "&".join("{}={}".format(k, v) for k, v in sorted(pairs))
    base_string = "&".join([method.upper(), _pct(url), _pct(param_string)])
    key = "{}&{}".format(_pct(consumer_secret), _pct(token_secret))
    digest = hmac.new(key.encode(), base_string.encode(), hashlib.sha1).digest()
    oauth["oauth_signature"] = base64.b64encode(digest).decode()
    return "OAuth " + ", ".join(
        '{}="{}"'.format(_pct(k), _pct(v)) for k, v in sorted(oauth.items())
    )


class XAdapter(PlatformAdapter):
    platform = "x"

    def __init__(
        self,
        *args: Any,
        chunk_size: int = X_CHUNK_SIZE,
        upload_url: str = X_UPLOAD_URL,
        tweet_url: str = X_TWEET_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_size = chunk_size
        self.upload_url = upload_url
        self.tweet_url = tweet_url
        self._pending_text: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_valid_credential(self, force_refresh: bool = False) -> Credential:
        if self.token_store is None:
            raise CredentialError("No token store configured for x")
        stored = self.token_store.get_token(self.platform)
        if stored is None:
            raise CredentialError("x account is not connected")
        if not stored.refresh_token:
            raise CredentialError("x token secret missing; reconnect the account")
        return Credential(
            access_token=stored.access_token,
            expires_at=math.inf,
            refresh_token=stored.refresh_token,
            account_name=stored.account_name,
            account_id=stored.account_id,
        )

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        raise CredentialError("x tokens cannot be refreshed; reconnect the account")

    def _auth(
        self,
        method: str,
        url: str,
        credential: Credential,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, str]:
        consumer_key, consumer_secret = load_client_credentials("x")
        return {
            "Authorization": oauth1_header(
                method,
                url,
                consumer_key,
                consumer_secret,
                credential.access_token,
                credential.refresh_token or "",
                params,
            )
        }

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _command(self, credential: Credential, form: Dict[str, str]) -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            self.upload_url,
            data=form,
            headers=self._auth("POST", self.upload_url, credential, form),
        )
        return resp.json() if resp.content else {}

    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        total = await self._source_size(content.video_url)
        init = await self._command(credential, {
            "command": "INIT",
            "total_bytes": str(total),
            "media_type": "video/mp4",
            "media_category": "tweet_video",
        })
        media_id = init.get("media_id_string")
        if not media_id:
            raise TerminalPlatformRejection("x INIT response missing media_id_string")

        segment = 0
        for start in range(0, total, self.chunk_size):
            end = min(start + self.chunk_size, total) - 1
            chunk = await self._read_chunk(content.video_url, start, end)
            query = {"command": "APPEND", "media_id": media_id, "segment_index": str(segment)}
            await self._request(
                "POST",
                self.upload_url,
                params=query,
                files={"media": ("chunk", chunk, "application/octet-stream")},
                headers=self._auth("POST", self.upload_url, credential, query),
            )
            segment += 1
            if on_progress:
                on_progress((end + 1) / total * 100.0)

        await self._command(credential, {"command": "FINALIZE", "media_id": media_id})
        logger.info("x media %s uploaded in %d segment(s)", media_id, segment)
        self._pending_text[media_id] = content.caption or content.title or ""
        return media_id

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _post_tweet(self, credential: Credential, media_id: str) -> str:
        body = {
            "text": self._pending_text.get(media_id, ""),
            "media": {"media_ids": [media_id]},
        }
        resp = await self._request(
            "POST",
            self.tweet_url,
            json=body,
            headers=self._auth("POST", self.tweet_url, credential),
        )
        tweet_id = (resp.json().get("data") or {}).get("id")
        if not tweet_id:
            raise TerminalPlatformRejection("x tweet response missing id")
        self._pending_text.pop(media_id, None)
        return tweet_id

    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        query = {"command": "STATUS", "media_id": job_id}
        resp = await self._request(
            "GET",
            self.upload_url,
            params=query,
            headers=self._auth("GET", self.upload_url, credential, query),
        )
        info = resp.json().get("processing_info")
        state = info.get("state") if info else "succeeded"

        if state == "failed":
            error = info.get("error") or {}
            self._pending_text.pop(job_id, None)
            return PublishStatus(
                terminal=True,
                success=False,
                message="x media processing failed: {}".format(
                    error.get("message") or error.get("name") or "unknown error"
                ),
            )
        if state == "succeeded":
            tweet_id = await self._post_tweet(credential, job_id)
            logger.info("x media %s posted as tweet %s", job_id, tweet_id)
            return PublishStatus(
                terminal=True, success=True, video_id=tweet_id, processing_progress=100.0
            )
        return PublishStatus(
            terminal=False,
            processing_progress=float(info.get("progress_percent") or 0),
            message=state,
        )
