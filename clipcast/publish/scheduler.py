"""Single-flight publish scheduler.

WHY: Publishing a post means rendering a video, uploading it, and waiting
(sometimes many minutes) for the platform to process it. Running one post
at a time across every destination keeps render load and API quotas
predictable and makes the run order obvious: FIFO by creation time.

HOW: run() repeatedly takes the head of the store's derived queue and
dispatch()es it. dispatch() walks the post through
queued -> rendering -> uploading -> completed using the store's
transition-checked mutators, calling the Renderer collaborator and then
the destination's PlatformAdapter (credential, initiate, poll). The poll
loop awaits poll_interval_s between polls (no spinning) and gives up after
poll_timeout_s. Every exception raised inside an attempt is caught here
and recorded with mark_post_failed(); nothing escapes to stop the run.

RULES:
- Exactly one post is in flight at a time; run() calls are serialized
- A queued post whose destination has no adapter fails the whole run
  with ConfigurationError before anything is dispatched
- The scheduler never retries on its own; retries are user actions
- The only state held here is the id of the in-flight post
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from clipcast.config import POLL_INTERVAL_S, POLL_TIMEOUT_S
from clipcast.errors import (
    ConfigurationError,
    PublishTimeoutError,
    RenderError,
    TerminalPlatformRejection,
    error_kind,
)
from clipcast.publish.adapters.base import Credential, PlatformAdapter, PublishStatus
from clipcast.publish.models import (
    Completed,
    Destination,
    Failed,
    Post,
    Rendering,
    Uploading,
)
from clipcast.publish.platforms import build_publish_content
from clipcast.publish.store import PublishStore

logger = logging.getLogger(__name__)

# Processing progress shown once the platform has accepted the upload
_ACCEPTED_PROCESSING_PROGRESS = 10.0


class Renderer(abc.ABC):
    """Collaborator that turns a post into a rendered video.

    Implementations build the render plan for the post's clip, drive the
    pixel renderer, report 0-100 progress through ``on_progress`` and
    return the output location (URL or local path). Raise RenderError
    (or any exception) on failure.
    """

    @abc.abstractmethod
    async def render(self, post: Post, on_progress: Callable[[float], None]) -> str:
        ...


def status_view(post: Post) -> Dict[str, Any]:
    """Job status as consumed by the UI.

    Returns {id, status, uploadProgress, processingProgress, videoId,
    errorMessage}; progress values are 0-100.
    """
    status = post.status_data
    view: Dict[str, Any] = {
        "id": post.id,
        "status": post.status.value,
        "uploadProgress": 0.0,
        "processingProgress": 0.0,
        "videoId": None,
        "errorMessage": None,
    }
    if isinstance(status, Uploading):
        view["uploadProgress"] = status.upload_progress
        view["processingProgress"] = status.processing_progress
    elif isinstance(status, Completed):
        view["uploadProgress"] = 100.0
        view["processingProgress"] = 100.0
        view["videoId"] = status.video_id
    elif isinstance(status, Failed):
        view["errorMessage"] = status.error
    return view


class PublishScheduler:
    """Drains the publish queue one post at a time.

    Args:
        store: The post store (source of the derived queue).
        renderer: Renderer collaborator.
        adapters: Destination -> PlatformAdapter.
        poll_interval_s: Seconds to wait between status polls.
        poll_timeout_s: Maximum seconds to wait for a terminal status.
        sleep: Awaitable sleep, asyncio.sleep by default.
        clock: Monotonic clock used for the poll timeout.
    """

    def __init__(
        self,
        store: PublishStore,
        renderer: Renderer,
        adapters: Mapping[Destination, PlatformAdapter],
        poll_interval_s: float = POLL_INTERVAL_S,
        poll_timeout_s: float = POLL_TIMEOUT_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.adapters = dict(adapters)
        self.poll_interval_s = poll_interval_s
        self.poll_timeout_s = poll_timeout_s
        self._sleep = sleep
        self._clock = clock
        self._run_lock = asyncio.Lock()
        self._current_post_id: Optional[str] = None

    @property
    def current_post_id(self) -> Optional[str]:
        return self._current_post_id

    status_view = staticmethod(status_view)

    def _adapter_for(self, post: Post) -> PlatformAdapter:
        adapter = self.adapters.get(post.destination)
        if adapter is None:
            raise ConfigurationError(
                "No publish adapter configured for destination '{}'".format(post.destination.value)
            )
        return adapter

    def check_adapters(self, posts: Iterable[Post]) -> None:
        """Raise ConfigurationError if any post's destination has no adapter."""
        missing = sorted({p.destination.value for p in posts if p.destination not in self.adapters})
        if missing:
            raise ConfigurationError(
                "No publish adapter configured for: {}".format(", ".join(missing))
            )

    async def run(self) -> int:
        """Dispatch queued posts until the queue is empty.

        Returns:
            The number of posts dispatched (completed or failed).

        Raises:
            ConfigurationError: A queued post targets a destination with no
                adapter. Raised before any post is dispatched.
        """
        async with self._run_lock:
            self.check_adapters(self.store.get_queued_posts())
            processed = 0
            while True:
                post = self.store.get_next_in_queue()
                if post is None:
                    break
                if not await self.dispatch(post):
                    logger.warning("Could not start post %s; stopping run", post.id)
                    break
                processed += 1
            logger.info("Publish run finished: %d posts dispatched", processed)
            return processed

    async def dispatch(self, post: Post) -> bool:
        """Run one publish attempt for a queued post.

        Returns False if the post could not be moved to rendering (not
        queued, or another post is in flight); True once the attempt has
        ended in completed or failed.
        """
        if not self.store.update_post_status(post.id, Rendering()):
            return False

        self._current_post_id = post.id
        logger.info("Dispatching post %s to %s", post.id, post.destination.value)
        try:
            await self._publish(post)
        except Exception as exc:
            logger.exception("Publishing post %s failed", post.id)
            message = str(exc) or exc.__class__.__name__
            self.store.mark_post_failed(post.id, message, error_kind(exc))
        finally:
            self._current_post_id = None
        return True

    async def _publish(self, post: Post) -> None:
        adapter = self._adapter_for(post)

        def on_render_progress(progress: float) -> None:
            self.store.update_progress(post.id, Rendering(progress=progress))

        output_url = await self.renderer.render(post, on_render_progress)

        if not self.store.update_post_status(post.id, Uploading(output_url=output_url)):
            raise ConfigurationError("Post {} left the rendering state during render".format(post.id))

        content = build_publish_content(post, output_url)
        credential = await adapter.get_valid_credential()

        def on_upload_progress(progress: float) -> None:
            self.store.update_progress(
                post.id, Uploading(upload_progress=progress, output_url=output_url)
            )

        job_id = await adapter.initiate_publish(credential, content, on_upload_progress)
        self.store.update_progress(
            post.id,
            Uploading(
                upload_progress=100.0,
                processing_progress=_ACCEPTED_PROCESSING_PROGRESS,
                stage="processing",
                output_url=output_url,
                external_job_id=job_id,
            ),
        )

        status = await self._poll_until_terminal(adapter, credential, post.id, job_id, output_url)
        if not status.success:
            raise TerminalPlatformRejection(status.message or "Platform reported the publish as failed")

        self.store.mark_post_complete(post.id, video_id=status.video_id, output_url=output_url)

    async def _poll_until_terminal(
        self,
        adapter: PlatformAdapter,
        credential: Credential,
        post_id: str,
        job_id: str,
        output_url: str,
    ) -> PublishStatus:
        """Poll the adapter every poll_interval_s until a terminal status.

        Raises:
            PublishTimeoutError: No terminal status within poll_timeout_s.
        """
        started = self._clock()
        while True:
            status = await adapter.poll_status(credential, job_id)
            if status.terminal:
                return status

            self.store.update_progress(
                post_id,
                Uploading(
                    upload_progress=100.0,
                    processing_progress=status.processing_progress,
                    stage="processing",
                    output_url=output_url,
                    external_job_id=job_id,
                ),
            )

            elapsed = self._clock() - started
            if elapsed >= self.poll_timeout_s:
                raise PublishTimeoutError(
                    "No terminal status for job {} after {:.0f}s".format(job_id, elapsed)
                )
            await self._sleep(self.poll_interval_s)
            # refreshes only when close to expiry
            credential = await adapter.get_valid_credential()


class DirectoryRenderer(Renderer):
    """Renderer for clips that were already rendered into a directory.

    Looks for ``<clip_id>-<format>.mp4`` (format with ":" replaced by "x",
    e.g. ``abc-9x16.mp4``), then ``<clip_id>.mp4``.
    """

    def __init__(self, render_dir: Union[str, Path]) -> None:
        self.render_dir = Path(render_dir)

    async def render(self, post: Post, on_progress: Callable[[float], None]) -> str:
        if not post.clip_id:
            raise RenderError("Post {} has no clip to render".format(post.id))
        candidates = []
        if post.format:
            candidates.append(
                self.render_dir / "{}-{}.mp4".format(post.clip_id, post.format.replace(":", "x"))
            )
        candidates.append(self.render_dir / "{}.mp4".format(post.clip_id))
        for path in candidates:
            if path.is_file():
                on_progress(100.0)
                return str(path)
        raise RenderError(
            "No rendered file for clip {} in {}".format(post.clip_id, self.render_dir)
        )
