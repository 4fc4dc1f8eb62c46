"""TikTok Content Posting API adapter (direct post, pull from URL).

WHY: TikTok ingests the rendered video by downloading it from a public
URL, then processes it asynchronously. Publishing is therefore: pick a
privacy level the creator is allowed to use, init the post, and poll the
publish status until it is complete or failed.

HOW: Three JSON POSTs against the Content Posting API:
  creator_info/query -> privacy_level_options
  video/init         -> publish_id (source PULL_FROM_URL)
  status/fetch       -> status (+ video/share ids when done)
Token refresh is a form-encoded POST to the OAuth token endpoint.

RULES:
- Preferred privacy level is SELF_ONLY when allowed, else the first option
- Status FAILED is a terminal failure; COMPLETE / SUCCESS (and
  PUBLISH_COMPLETE) are terminal success; anything else keeps polling
- A successful init means the upload leg is done (upload progress 100)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from clipcast.config import TIKTOK_API_BASE, TIKTOK_TOKEN_URL, load_client_credentials
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

_PREFERRED_PRIVACY = "SELF_ONLY"
_SUCCESS_STATUSES = frozenset({"COMPLETE", "SUCCESS", "PUBLISH_COMPLETE"})
_FAILED_STATUSES = frozenset({"FAILED"})
# Processing progress reported while TikTok has not finished
_PROCESSING_PROGRESS = 50.0


class TikTokAdapter(PlatformAdapter):
    platform = "tiktok"

    def __init__(self, *args: Any, api_base: str = TIKTOK_API_BASE, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.api_base = api_base.rstrip("/")

    @staticmethod
    def _auth_headers(credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": "Bearer {}".format(credential.access_token),
            "Content-Type": "application/json; charset=UTF-8",
        }

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        client_key, client_secret = load_client_credentials("tiktok")
        resp = await self._http().post(
            TIKTOK_TOKEN_URL,
            data={
                "client_key": client_key,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        if resp.status_code != 200:
            raise CredentialError(
                "TikTok token refresh failed ({}): {}".format(resp.status_code, resp.text)
            )
        data = resp.json()
        if data.get("error") or "access_token" not in data:
            raise CredentialError(
                "TikTok token refresh failed: {}".format(
                    data.get("error_description") or data.get("error") or "no access token"
                )
            )
        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in_s=float(data.get("expires_in", 0)),
        )

    async def query_privacy_levels(self, credential: Credential) -> List[str]:
        resp = await self._request(
            "POST",
            "{}/v2/post/publish/creator_info/query/".format(self.api_base),
            headers=self._auth_headers(credential),
            json={},
        )
        data = resp.json().get("data") or {}
        return list(data.get("privacy_level_options") or [])

    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        levels = await self.query_privacy_levels(credential)
        if not levels:
            privacy_level = _PREFERRED_PRIVACY
        elif _PREFERRED_PRIVACY in levels:
            privacy_level = _PREFERRED_PRIVACY
        else:
            privacy_level = levels[0]

        resp = await self._request(
            "POST",
            "{}/v2/post/publish/video/init/".format(self.api_base),
            headers=self._auth_headers(credential),
            json={
                "post_info": {
                    "title": content.caption,
                    "privacy_level": privacy_level,
                    "disable_duet": False,
                    "disable_comment": False,
                    "disable_stitch": False,
                },
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "video_url": content.video_url,
                },
            },
        )
        publish_id = (resp.json().get("data") or {}).get("publish_id")
        if not publish_id:
            raise TerminalPlatformRejection("TikTok publish init returned no publish_id")

        logger.info("TikTok publish %s initiated (privacy %s)", publish_id, privacy_level)
        if on_progress:
            on_progress(100.0)
        return publish_id

    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        resp = await self._request(
            "POST",
            "{}/v2/post/publish/status/fetch/".format(self.api_base),
            headers=self._auth_headers(credential),
            json={"publish_id": job_id},
        )
        data = resp.json().get("data") or {}
        status = data.get("status") or ""

        if status in _FAILED_STATUSES:
            return PublishStatus(
                terminal=True,
                success=False,
                message="TikTok publish failed: {}".format(data.get("fail_reason") or "unknown reason"),
            )
        if status in _SUCCESS_STATUSES:
            # field name is misspelled in the API itself
            ids = data.get("publicaly_available_post_id") or []
            video_id = data.get("video_id") or data.get("share_id") or data.get("item_id")
            if not video_id and ids:
                video_id = str(ids[0])
            return PublishStatus(
                terminal=True,
                success=True,
                video_id=video_id,
                processing_progress=100.0,
            )
        return PublishStatus(
            terminal=False,
            processing_progress=_PROCESSING_PROGRESS,
            message=status or None,
        )
