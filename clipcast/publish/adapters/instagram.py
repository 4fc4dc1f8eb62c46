"""Instagram Graph API adapter (media container, then publish).

WHY: Instagram pulls the rendered video from a public URL into a media
container and transcodes it asynchronously. Only a container whose
status is FINISHED can be published, so publishing is two-phase.

HOW: initiate_publish() POSTs the container ({ig_user_id}/media, form
encoded) and returns the container id. poll_status() reads the
container's status_code; on FINISHED it calls media_publish and reports
the new media id as the video id. Token refresh exchanges the stored
long-lived token for a fresh one (grant_type=fb_exchange_token).

RULES:
- The Instagram business account id is the stored token's account_id
- The rendered video must be reachable at a public http(s) URL
- instagram-reels posts as REELS (not shared to feed); instagram-post
  as VIDEO
- status_code ERROR or EXPIRED is a terminal failure; FINISHED publishes;
  IN_PROGRESS and anything else keeps polling
- The refreshed long-lived token is stored as both access and refresh token
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from clipcast.config import INSTAGRAM_GRAPH_BASE, load_client_credentials
from clipcast.errors import CredentialError, TerminalPlatformRejection
from clipcast.publish.adapters.base import (
    Credential,
    PlatformAdapter,
    ProgressCallback,
    PublishStatus,
    RefreshedToken,
    is_remote_url,
)
from clipcast.publish.models import Destination
from clipcast.publish.platforms import PublishContent

logger = logging.getLogger(__name__)

_FAILED_STATUSES = frozenset({"ERROR", "EXPIRED"})
# Processing progress reported while the container is transcoding
_PROCESSING_PROGRESS = 50.0


class InstagramAdapter(PlatformAdapter):
    platform = "instagram"

    def __init__(
        self,
        *args: Any,
        graph_base: str = INSTAGRAM_GRAPH_BASE,
        share_reels_to_feed: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.graph_base = graph_base.rstrip("/")
        self.share_reels_to_feed = share_reels_to_feed

    @staticmethod
    def _account_id(credential: Credential) -> str:
        if not credential.account_id:
            raise CredentialError(
                "Instagram business account id missing; reconnect the account"
            )
        return credential.account_id

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        client_id, client_secret = load_client_credentials("instagram")
        resp = await self._http().get(
            "{}/oauth/access_token".format(self.graph_base),
            params={
                "grant_type": "fb_exchange_token",
                "client_id": client_id,
                "client_secret": client_secret,
                "fb_exchange_token": refresh_token,
            },
        )
        if resp.status_code != 200:
            raise CredentialError(
                "Instagram token exchange failed ({}): {}".format(resp.status_code, resp.text)
            )
        data = resp.json()
        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data["access_token"],
            expires_in_s=float(data.get("expires_in", 60 * 24 * 3600)),
        )

    async def initiate_publish(
        self,
        credential: Credential,
        content: PublishContent,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if not is_remote_url(content.video_url):
            raise TerminalPlatformRejection(
                "Instagram fetches the video itself; {} is not a public URL".format(content.video_url)
            )
        form = {
            "access_token": credential.access_token,
            "video_url": content.video_url,
        }
        if content.destination == Destination.INSTAGRAM_POST.value:
            form["media_type"] = "VIDEO"
        else:
            form["media_type"] = "REELS"
            form["share_to_feed"] = "true" if self.share_reels_to_feed else "false"
        if content.caption:
            form["caption"] = content.caption

        resp = await self._request(
            "POST",
            "{}/{}/media".format(self.graph_base, self._account_id(credential)),
            data=form,
        )
        container_id = resp.json().get("id")
        if not container_id:
            raise TerminalPlatformRejection("Instagram container response missing id")

        logger.info("Instagram %s container %s created", form["media_type"], container_id)
        if on_progress:
            on_progress(100.0)
        return container_id

    async def _publish_container(self, credential: Credential, container_id: str) -> str:
        resp = await self._request(
            "POST",
            "{}/{}/media_publish".format(self.graph_base, self._account_id(credential)),
            data={"access_token": credential.access_token, "creation_id": container_id},
        )
        media_id = resp.json().get("id")
        if not media_id:
            raise TerminalPlatformRejection("Instagram publish response missing id")
        return media_id

    async def poll_status(self, credential: Credential, job_id: str) -> PublishStatus:
        resp = await self._request(
            "GET",
            "{}/{}".format(self.graph_base, job_id),
            params={"fields": "status,status_code", "access_token": credential.access_token},
        )
        data = resp.json()
        status_code = data.get("status_code") or ""

        if status_code in _FAILED_STATUSES:
            return PublishStatus(
                terminal=True,
                success=False,
                message="Instagram processing failed: {}".format(data.get("status") or status_code),
            )
        if status_code == "FINISHED":
            media_id = await self._publish_container(credential, job_id)
            logger.info("Instagram container %s published as %s", job_id, media_id)
            return PublishStatus(
                terminal=True,
                success=True,
                video_id=media_id,
                processing_progress=100.0,
            )
        return PublishStatus(
            terminal=False,
            processing_progress=_PROCESSING_PROGRESS,
            message=status_code or None,
        )
