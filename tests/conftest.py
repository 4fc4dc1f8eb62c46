"""Shared test fixtures for the clipcast test suite.

WHY: Caption, render plan and publishing tests all need the same small,
hand-checkable inputs: a five-word transcript with round timings, a
two-camera setup, and publishing collaborators that never touch the
network or a real renderer.

HOW: Pytest fixtures provide the sample words, camera sources, a fresh
PublishStore, and fake Renderer/PlatformAdapter implementations whose
behavior each test configures.

RULES:
- "one two three four five" at 0.5 s/word: at 30 fps each word spans
  exactly 15 frames, so expected frame numbers can be checked by hand
- Fakes record their calls; none of them sleeps
- Each test gets its own store (no shared mutable state)
"""

from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from clipcast.core.ir import VideoSource, Word
from clipcast.publish.adapters.base import (
    Credential,
    PlatformAdapter,
    PublishStatus,
    RefreshedToken,
)
from clipcast.publish.models import Post
from clipcast.publish.platforms import PublishContent
from clipcast.publish.scheduler import Renderer
from clipcast.publish.store import PublishStore


# ---------------------------------------------------------------------------
# Sample transcript and cameras
# ---------------------------------------------------------------------------

FIVE_WORDS = ["one", "two", "three", "four", "five"]


@pytest.fixture
def five_words() -> List[Word]:
    """'one two three four five', 0.5 s per word starting at 0."""
    return [Word(text, i * 0.5, (i + 1) * 0.5) for i, text in enumerate(FIVE_WORDS)]


@pytest.fixture
def two_cameras() -> List[VideoSource]:
    """Two 16:9 speaker cameras, host first."""
    return [
        VideoSource("cam-a", label="Host", width=1920, height=1080, display_order=0),
        VideoSource("cam-b", label="Guest", width=1920, height=1080, display_order=1),
    ]


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> PublishStore:
    return PublishStore()


class FakeRenderer(Renderer):
    """Renderer that reports progress and returns a fixed output URL."""

    def __init__(self, output_url: str = "https://cdn.example.com/out.mp4", error: Optional[Exception] = None):
        self.output_url = output_url
        self.error = error
        self.rendered: List[str] = []
        self.on_render: Optional[Callable[[Post], None]] = None

    async def render(self, post: Post, on_progress: Callable[[float], None]) -> str:
        self.rendered.append(post.id)
        if self.on_render is not None:
            self.on_render(post)
        on_progress(50.0)
        if self.error is not None:
            raise self.error
        on_progress(100.0)
        return self.output_url


class FakeAdapter(PlatformAdapter):
    """Adapter that succeeds after ``polls_until_done`` polls unless told otherwise."""

    platform = "fake"
    requires_credential = False

    def __init__(
        self,
        polls_until_done: int = 1,
        final_status: Optional[PublishStatus] = None,
        initiate_error: Optional[Exception] = None,
    ):
        super().__init__()
        self.polls_until_done = polls_until_done
        self.final_status = final_status or PublishStatus(
            terminal=True, success=True, video_id="vid-1", processing_progress=100.0
        )
        self.initiate_error = initiate_error
        self.published: List[PublishContent] = []
        self.polls = 0

    async def get_valid_credential(self, force_refresh: bool = False) -> Credential:
        return Credential(access_token="fake-token", expires_at=float("inf"))

    async def _refresh(self, refresh_token: str) -> RefreshedToken:
        raise NotImplementedError

    async def initiate_publish(self, credential, content, on_progress=None) -> str:
        if self.initiate_error is not None:
            raise self.initiate_error
        self.published.append(content)
        if on_progress:
            on_progress(100.0)
        return "job-{}".format(len(self.published))

    async def poll_status(self, credential, job_id) -> PublishStatus:
        self.polls += 1
        if self.polls < self.polls_until_done:
            return PublishStatus(terminal=False, processing_progress=40.0)
        return self.final_status


@pytest.fixture
def make_renderer():
    """Factory for FakeRenderer (call with output_url=, error=)."""
    return FakeRenderer


@pytest.fixture
def make_adapter():
    """Factory for FakeAdapter (call with polls_until_done=, final_status=, initiate_error=)."""
    return FakeAdapter


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def no_sleep():
    """Drop-in for asyncio.sleep that returns immediately."""
    return _no_sleep
