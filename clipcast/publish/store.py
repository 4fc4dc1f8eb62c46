"""Thread-safe post store with a central status state machine.

WHY: The HTTP API, the scheduler and any UI all read and change posts at
the same time. Every status change must pass the same transition check
no matter who makes it, and the publish queue must never drift out of
sync with post statuses. So there is exactly one collection of posts,
one lock, and the queue / in-progress / failed views are computed from
statuses on every read instead of being stored.

HOW: Posts live in an insertion-ordered dict keyed by id. Every mutator
acquires self._lock, builds a new frozen Post (dataclasses.replace) and
swaps it in, so readers only ever see whole posts. Status changes go
through _transition(), which checks TRANSITIONS and the single-flight
rule. When a path is configured, the post list is written to JSON after
every successful mutation and read back by load().

RULES:
- Legal transitions: idle->queued, queued->rendering, queued->idle,
  rendering->uploading, rendering->failed, uploading->completed,
  uploading->failed, failed->queued; anything else is logged and ignored
- queued->rendering is refused while another post is rendering/uploading
- Same-state progress updates use update_progress(), never update_post_status()
- Content edits are only allowed while a post is idle or failed
- Queue = enabled queued posts by created_at (ties keep insertion order)
- On load, queued/rendering/uploading posts are reset to idle
- Selectors return snapshots (frozen posts in new lists)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from clipcast.config import get_video_format
from clipcast.publish.models import (
    IN_FLIGHT_STATES,
    Completed,
    Destination,
    Failed,
    Idle,
    Post,
    PostState,
    Queued,
    Rendering,
    StatusData,
    Uploading,
)
from clipcast.publish.platforms import get_platform_config

logger = logging.getLogger(__name__)

STORE_VERSION = 1

TRANSITIONS: Dict[PostState, frozenset] = {
    PostState.IDLE: frozenset({PostState.QUEUED}),
    PostState.QUEUED: frozenset({PostState.RENDERING, PostState.IDLE}),
    PostState.RENDERING: frozenset({PostState.UPLOADING, PostState.FAILED}),
    PostState.UPLOADING: frozenset({PostState.COMPLETED, PostState.FAILED}),
    PostState.COMPLETED: frozenset(),
    PostState.FAILED: frozenset({PostState.QUEUED}),
}

EDITABLE_STATES = frozenset({PostState.IDLE, PostState.FAILED})


def is_valid_transition(current: PostState, target: PostState) -> bool:
    return target in TRANSITIONS[current]


def _retry_count(status: StatusData) -> int:
    return getattr(status, "retry_count", 0)


def _post_progress(post: Post) -> float:
    """0-100 contribution of one post to the overall progress."""
    status = post.status_data
    if isinstance(status, (Completed, Failed)):
        return 100.0
    if isinstance(status, Rendering):
        return max(0.0, min(100.0, status.progress))
    if isinstance(status, Uploading):
        return max(0.0, min(100.0, (status.upload_progress + status.processing_progress) / 2.0))
    return 0.0


class PublishStore:
    """Authoritative record of every scheduled post.

    WHY: One place owns post state so that the transition rules and the
    single-flight rule are enforced identically for every caller.

    HOW: See module docstring. Pass ``path`` to persist the post list.

    RULES:
    - All public methods that mutate state acquire self._lock
    - Lookups return None for unknown ids (no exceptions)
    - Workflow methods return how many posts they changed
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._posts: Dict[str, Post] = {}
        self._lock = threading.Lock()
        self.path = Path(path) if path is not None else None

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_post(
        self,
        destination: Union[str, Destination],
        clip_id: Optional[str] = None,
        format: Optional[str] = None,
        text_content: str = "",
        title: str = "",
        description: str = "",
        hashtags: Iterable[str] = (),
        source_snippet_id: Optional[str] = None,
        enabled: bool = True,
    ) -> Post:
        """Create an idle post for a destination.

        RULES:
        - Raises ConfigurationError for an unknown destination or format
        - format defaults to the destination's default format
        """
        config = get_platform_config(Destination.parse(destination))
        video_format = format or config.default_format
        get_video_format(video_format)

        post = Post(
            id=uuid.uuid4().hex,
            destination=config.destination,
            created_at=time.time(),
            clip_id=clip_id,
            format=video_format,
            text_content=text_content,
            title=title,
            description=description,
            hashtags=tuple(hashtags),
            source_snippet_id=source_snippet_id,
            enabled=enabled,
        )

        with self._lock:
            self._posts[post.id] = post
            self._persist()

        logger.info("Created post %s for %s", post.id, post.destination.value)
        return post

    def remove_post(self, post_id: str) -> bool:
        """Delete a post. In-flight posts cannot be removed."""
        with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return False
            if post.in_flight:
                logger.warning("Refusing to remove in-flight post %s (%s)", post_id, post.status.value)
                return False
            del self._posts[post_id]
            self._persist()

        logger.info("Removed post %s", post_id)
        return True

    def duplicate_post(self, post_id: str) -> Optional[Post]:
        """Copy a post's content into a new idle post."""
        with self._lock:
            original = self._posts.get(post_id)
            if original is None:
                return None
            duplicate = replace(
                original,
                id=uuid.uuid4().hex,
                created_at=time.time(),
                status_data=Idle(),
            )
            self._posts[duplicate.id] = duplicate
            self._persist()

        logger.info("Duplicated post %s as %s", post_id, duplicate.id)
        return duplicate

    # ------------------------------------------------------------------
    # Content setters
    # ------------------------------------------------------------------

    def _edit(self, post_id: str, **changes: Any) -> Optional[Post]:
        with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return None
            if post.status not in EDITABLE_STATES:
                logger.warning(
                    "Ignoring edit of post %s while %s", post_id, post.status.value
                )
                return None
            updated = replace(post, **changes)
            self._posts[post_id] = updated
            self._persist()
            return updated

    def set_post_clip(self, post_id: str, clip_id: Optional[str]) -> Optional[Post]:
        post = self.get_post(post_id)
        if post is None:
            return None
        video_format = post.format
        if clip_id and not video_format:
            video_format = get_platform_config(post.destination).default_format
        return self._edit(post_id, clip_id=clip_id, format=video_format)

    def set_post_text(
        self,
        post_id: str,
        text: str,
        from_snippet_id: Optional[str] = None,
    ) -> Optional[Post]:
        """Set the caption text. A hand edit clears the snippet attribution."""
        return self._edit(post_id, text_content=text, source_snippet_id=from_snippet_id)

    def set_post_title(self, post_id: str, title: str) -> Optional[Post]:
        return self._edit(post_id, title=title)

    def set_post_description(
        self,
        post_id: str,
        description: str,
        from_snippet_id: Optional[str] = None,
    ) -> Optional[Post]:
        return self._edit(post_id, description=description, source_snippet_id=from_snippet_id)

    def set_post_format(self, post_id: str, format: str) -> Optional[Post]:
        get_video_format(format)
        return self._edit(post_id, format=format)

    def set_post_render_scale(self, post_id: str, render_scale: float) -> Optional[Post]:
        if render_scale <= 0:
            raise ValueError("render_scale must be positive, got {}".format(render_scale))
        return self._edit(post_id, render_scale=float(render_scale))

    def set_post_hashtags(self, post_id: str, hashtags: Iterable[str]) -> Optional[Post]:
        cleaned = tuple(tag.strip().lstrip("#") for tag in hashtags if tag.strip().lstrip("#"))
        return self._edit(post_id, hashtags=cleaned)

    def toggle_post(self, post_id: str) -> Optional[Post]:
        post = self.get_post(post_id)
        if post is None:
            return None
        return self._edit(post_id, enabled=not post.enabled)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _transition(self, post: Post, status_data: StatusData) -> bool:
        """Apply a status change to a post. Caller must hold self._lock."""
        current = post.status
        target = status_data.state

        if not is_valid_transition(current, target):
            logger.warning(
                "Invalid transition for post %s: %s -> %s",
                post.id, current.value, target.value,
            )
            return False

        if target is PostState.RENDERING:
            for other in self._posts.values():
                if other.id != post.id and other.in_flight:
                    logger.warning(
                        "Refusing to start post %s: post %s is already %s",
                        post.id, other.id, other.status.value,
                    )
                    return False

        if isinstance(status_data, (Idle, Queued, Rendering, Uploading)):
            status_data = replace(status_data, retry_count=_retry_count(post.status_data))

        self._posts[post.id] = post.with_status(status_data)
        logger.debug("Post %s: %s -> %s", post.id, current.value, target.value)
        return True

    def update_post_status(self, post_id: str, status_data: StatusData) -> bool:
        """Move a post to a new state if the transition is legal.

        Returns True if applied, False if the post is unknown or the
        transition was rejected (the post is left unchanged).
        """
        with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return False
            applied = self._transition(post, status_data)
            if applied:
                self._persist()
            return applied

    def update_progress(self, post_id: str, status_data: Union[Rendering, Uploading]) -> bool:
        """Replace the payload of a rendering/uploading post without changing state."""
        with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return False
            if post.status not in IN_FLIGHT_STATES or status_data.state is not post.status:
                logger.warning(
                    "Ignoring progress update for post %s: %s payload while %s",
                    post_id, status_data.state.value, post.status.value,
                )
                return False
            status_data = replace(status_data, retry_count=_retry_count(post.status_data))
            self._posts[post_id] = post.with_status(status_data)
            return True

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def _set_enabled_all(self, enabled: bool) -> int:
        changed = 0
        with self._lock:
            for post_id, post in list(self._posts.items()):
                if post.enabled != enabled and post.status in EDITABLE_STATES:
                    self._posts[post_id] = replace(post, enabled=enabled)
                    changed += 1
            if changed:
                self._persist()
        return changed

    def enable_all(self) -> int:
        return self._set_enabled_all(True)

    def disable_all(self) -> int:
        return self._set_enabled_all(False)

    def remove_completed(self) -> int:
        with self._lock:
            done = [pid for pid, p in self._posts.items() if p.status is PostState.COMPLETED]
            for post_id in done:
                del self._posts[post_id]
            if done:
                self._persist()
        if done:
            logger.info("Removed %d completed posts", len(done))
        return len(done)

    # ------------------------------------------------------------------
    # Publishing workflow
    # ------------------------------------------------------------------

    def start_publishing(self) -> int:
        """Queue every enabled idle or failed post.

        Completed and in-flight posts are left alone, so calling this again
        mid-run only picks up newly added or failed posts.
        """
        queued = 0
        with self._lock:
            for post in list(self._posts.values()):
                if not post.enabled or post.status not in EDITABLE_STATES:
                    continue
                if self._transition(post, Queued()):
                    queued += 1
            if queued:
                self._persist()
        logger.info("Queued %d posts for publishing", queued)
        return queued

    def cancel_publishing(self) -> int:
        """Return every queued post to idle. In-flight posts keep running."""
        cancelled = 0
        with self._lock:
            for post in list(self._posts.values()):
                if post.status is PostState.QUEUED and self._transition(post, Idle()):
                    cancelled += 1
            if cancelled:
                self._persist()
        logger.info("Cancelled %d queued posts", cancelled)
        return cancelled

    def retry_post(self, post_id: str) -> bool:
        """Queue a failed post again. Posts in any other state are refused."""
        with self._lock:
            post = self._posts.get(post_id)
            if post is None or post.status is not PostState.FAILED:
                return False
            applied = self._transition(post, Queued())
            if applied:
                self._persist()
            return applied

    def retry_all_failed(self) -> int:
        retried = 0
        with self._lock:
            for post in list(self._posts.values()):
                if post.status is PostState.FAILED and self._transition(post, Queued()):
                    retried += 1
            if retried:
                self._persist()
        return retried

    def reset_stuck_posts(self) -> int:
        """Force queued, rendering and uploading posts back to idle.

        This is the recovery path after a crash or restart and deliberately
        bypasses the transition table.
        """
        with self._lock:
            reset = self._reset_unfinished()
            if reset:
                self._persist()
        if reset:
            logger.info("Reset %d stuck posts to idle", reset)
        return reset

    def _reset_unfinished(self) -> int:
        """Send queued and in-flight posts back to idle, keeping retry counts."""
        reset = 0
        for post_id, post in list(self._posts.items()):
            if post.status is PostState.QUEUED or post.in_flight:
                retry_count = _retry_count(post.status_data)
                self._posts[post_id] = post.with_status(Idle(retry_count=retry_count))
                if retry_count:
                    logger.warning(
                        "Post %s was %s after %d failed attempt(s); reset to idle",
                        post_id, post.status.value, retry_count,
                    )
                reset += 1
        return reset

    def mark_post_complete(
        self,
        post_id: str,
        video_id: Optional[str] = None,
        output_url: Optional[str] = None,
    ) -> bool:
        applied = self.update_post_status(
            post_id, Completed(video_id=video_id, output_url=output_url)
        )
        if applied:
            logger.info("Post %s completed (video %s)", post_id, video_id or "-")
        return applied

    def mark_post_failed(self, post_id: str, error: str, kind: str = "unknown") -> bool:
        """Record a failed attempt, incrementing the retry count."""
        with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return False
            failed = Failed(
                error=error,
                kind=kind,
                retry_count=_retry_count(post.status_data) + 1,
            )
            applied = self._transition(post, failed)
            if applied:
                self._persist()
        if applied:
            logger.info("Post %s failed (%s): %s", post_id, kind, error)
        return applied

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    def get_post(self, post_id: str) -> Optional[Post]:
        with self._lock:
            return self._posts.get(post_id)

    def list_posts(self) -> List[Post]:
        with self._lock:
            return list(self._posts.values())

    def _select(self, predicate: Callable[[Post], bool]) -> List[Post]:
        with self._lock:
            return [p for p in self._posts.values() if predicate(p)]

    def get_enabled_posts(self) -> List[Post]:
        return self._select(lambda p: p.enabled)

    def get_queued_posts(self) -> List[Post]:
        """Enabled queued posts, oldest first (stable for equal timestamps)."""
        queued = self._select(lambda p: p.enabled and p.status is PostState.QUEUED)
        return sorted(queued, key=lambda p: p.created_at)

    def get_next_in_queue(self) -> Optional[Post]:
        queued = self.get_queued_posts()
        return queued[0] if queued else None

    def get_failed_posts(self) -> List[Post]:
        return self._select(lambda p: p.status is PostState.FAILED)

    def get_in_progress_post(self) -> Optional[Post]:
        in_flight = self._select(lambda p: p.in_flight)
        return in_flight[0] if in_flight else None

    @property
    def is_publishing(self) -> bool:
        """True while anything is queued or in flight."""
        return bool(self._select(lambda p: p.in_flight or (p.enabled and p.status is PostState.QUEUED)))

    def get_overall_progress(self) -> Dict[str, int]:
        """Counts by state over enabled posts, plus an overall percent.

        Completed and failed posts count as 100%, in-flight posts as their
        current progress, everything else as 0%.
        """
        posts = self.get_enabled_posts()
        counts = {state: 0 for state in PostState}
        for post in posts:
            counts[post.status] += 1
        percent = 0
        if posts:
            percent = int(round(sum(_post_progress(p) for p in posts) / len(posts)))
        return {
            "total": len(posts),
            "completed": counts[PostState.COMPLETED],
            "failed": counts[PostState.FAILED],
            "inProgress": counts[PostState.RENDERING] + counts[PostState.UPLOADING],
            "queued": counts[PostState.QUEUED],
            "percent": percent,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        """Write the post list if a path is configured. Caller holds the lock.

        The write is synchronous and happens under the lock, so it blocks
        the event loop when called from the scheduler or a request handler.
        The file holds a few hundred small records at most and is replaced
        atomically; writing it inline keeps every acknowledged transition
        on disk before the lock is released.
        """
        if self.path is not None:
            self._write(self.path)

    def _write(self, path: Path) -> None:
        payload = {
            "version": STORE_VERSION,
            "posts": [p.to_dict() for p in self._posts.values()],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".posts-", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write all posts to JSON. Only posts are persisted, no runtime state."""
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No path configured for saving posts")
        with self._lock:
            self._write(target)
        return target

    def load(self, path: Optional[Union[str, Path]] = None) -> int:
        """Replace the post list with the one saved on disk.

        Posts that were queued or in flight when saved are reset to idle:
        there is no point to resume them from. A missing file loads nothing.
        Returns the number of posts loaded.
        """
        source = Path(path) if path is not None else self.path
        if source is None:
            raise ValueError("No path configured for loading posts")
        if not source.exists():
            return 0

        with open(source) as f:
            data = json.load(f)

        version = data.get("version", STORE_VERSION)
        if version > STORE_VERSION:
            logger.warning(
                "Post file %s has version %s, newer than %s", source, version, STORE_VERSION
            )
        posts = [Post.from_dict(item) for item in data.get("posts", [])]

        with self._lock:
            self._posts = {p.id: p for p in posts}
            reset = self._reset_unfinished()

        if reset:
            logger.info("Reset %d unfinished posts to idle on load", reset)
        logger.info("Loaded %d posts from %s", len(posts), source)
        return len(posts)
