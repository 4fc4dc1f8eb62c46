"""Post, destination and status data structures for publish orchestration.

WHY: A post is one (clip, destination) publish job. Its status is a tagged
union: each state carries only the data that makes sense in it (progress
while rendering, an external job id while uploading, an error and retry
count when failed). Modeling each variant as its own frozen dataclass
makes an impossible combination (a completed post with an error) simply
unrepresentable.

HOW: PostState is a str enum of the six states. Each status variant is a
frozen dataclass with a class-level ``state`` and to_dict()/from_dict()
for JSON. Post itself is frozen too: the store replaces whole Post objects
under its lock, so a reader holding a Post never sees it change.

RULES:
- Post identity (id, destination, created_at) never changes
- Only status_data and content fields are replaced, never mutated
- Status JSON is {"status": <state>, ...variant fields}
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from clipcast.errors import ConfigurationError


class Destination(str, enum.Enum):
    """Supported publish destinations.

    HOW: Inherits from str so values serialize cleanly to JSON.
    """

    YOUTUBE_SHORTS = "youtube-shorts"
    YOUTUBE_VIDEO = "youtube-video"
    INSTAGRAM_REELS = "instagram-reels"
    INSTAGRAM_POST = "instagram-post"
    X = "x"
    TIKTOK = "tiktok"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: Union[str, Destination]) -> Destination:
        """Look up a destination, raising ConfigurationError for unknown values."""
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                "Unknown destination '{}'. Available: {}".format(
                    value, ", ".join(d.value for d in cls)
                )
            ) from None


class PostState(str, enum.Enum):
    """Valid states for a post.

    RULES:
    - idle: created or cancelled, not scheduled
    - queued: waiting for the scheduler
    - rendering: the renderer is producing the video
    - uploading: the platform adapter is publishing it
    - completed: published (terminal)
    - failed: last attempt failed; may be retried
    """

    IDLE = "idle"
    QUEUED = "queued"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_STATES = frozenset({PostState.RENDERING, PostState.UPLOADING})


# ---------------------------------------------------------------------------
# Status variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    """Not scheduled.

    retry_count survives a cancel or a restart so that a post which already
    failed keeps its attempt count; it is omitted from JSON while zero.
    """

    state: ClassVar[PostState] = PostState.IDLE

    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if self.retry_count:
            return {"status": self.state.value, "retryCount": self.retry_count}
        return {"status": self.state.value}


@dataclass(frozen=True)
class Queued:
    state: ClassVar[PostState] = PostState.QUEUED

    queued_at: float = field(default_factory=time.time)
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.state.value, "queuedAt": self.queued_at, "retryCount": self.retry_count}


@dataclass(frozen=True)
class Rendering:
    state: ClassVar[PostState] = PostState.RENDERING

    progress: float = 0.0
    stage: str = "encoding"
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "progress": self.progress,
            "stage": self.stage,
            "retryCount": self.retry_count,
        }


@dataclass(frozen=True)
class Uploading:
    """Publishing through the platform adapter.

    upload_progress covers getting the bytes to the platform, and
    processing_progress covers the platform's own processing after that.

    retry_count on the in-flight variants is the number of failed attempts
    before this one; the store carries it forward until the next failure.
    """

    state: ClassVar[PostState] = PostState.UPLOADING

    upload_progress: float = 0.0
    processing_progress: float = 0.0
    stage: str = "uploading"
    output_url: Optional[str] = None
    external_job_id: Optional[str] = None
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "uploadProgress": self.upload_progress,
            "processingProgress": self.processing_progress,
            "stage": self.stage,
            "outputUrl": self.output_url,
            "externalJobId": self.external_job_id,
            "retryCount": self.retry_count,
        }


@dataclass(frozen=True)
class Completed:
    state: ClassVar[PostState] = PostState.COMPLETED

    completed_at: float = field(default_factory=time.time)
    video_id: Optional[str] = None
    output_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "completedAt": self.completed_at,
            "videoId": self.video_id,
            "outputUrl": self.output_url,
        }


@dataclass(frozen=True)
class Failed:
    """Last attempt failed.

    RULES:
    - retry_count counts failed attempts so far (1 after the first failure)
    - kind classifies the failure (see clipcast.errors.error_kind)
    """

    state: ClassVar[PostState] = PostState.FAILED

    error: str
    kind: str = "unknown"
    retry_count: int = 0
    failed_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "error": self.error,
            "errorKind": self.kind,
            "retryCount": self.retry_count,
            "failedAt": self.failed_at,
        }


StatusData = Union[Idle, Queued, Rendering, Uploading, Completed, Failed]


def status_from_dict(data: Dict[str, Any]) -> StatusData:
    """Rebuild a status variant from its JSON form."""
    state = PostState(data.get("status", "idle"))
    if state is PostState.QUEUED:
        return Queued(
            queued_at=float(data.get("queuedAt", time.time())),
            retry_count=int(data.get("retryCount", 0)),
        )
    if state is PostState.RENDERING:
        return Rendering(
            progress=float(data.get("progress", 0.0)),
            stage=data.get("stage", "encoding"),
            retry_count=int(data.get("retryCount", 0)),
        )
    if state is PostState.UPLOADING:
        return Uploading(
            upload_progress=float(data.get("uploadProgress", 0.0)),
            processing_progress=float(data.get("processingProgress", 0.0)),
            stage=data.get("stage", "uploading"),
            output_url=data.get("outputUrl"),
            external_job_id=data.get("externalJobId"),
            retry_count=int(data.get("retryCount", 0)),
        )
    if state is PostState.COMPLETED:
        return Completed(
            completed_at=float(data.get("completedAt", time.time())),
            video_id=data.get("videoId"),
            output_url=data.get("outputUrl"),
        )
    if state is PostState.FAILED:
        return Failed(
            error=str(data.get("error", "")),
            kind=data.get("errorKind", "unknown"),
            retry_count=int(data.get("retryCount", 0)),
            failed_at=float(data.get("failedAt", time.time())),
        )
    return Idle(retry_count=int(data.get("retryCount", 0)))


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Post:
    """One scheduled (clip, destination) publish job.

    RULES:
    - id: UUID4 hex, unique and immutable
    - format is only meaningful when clip_id is set
    - source_snippet_id is cleared when text is edited by hand
    """

    id: str
    destination: Destination
    created_at: float
    clip_id: Optional[str] = None
    format: Optional[str] = None
    render_scale: float = 1.0
    text_content: str = ""
    title: str = ""
    description: str = ""
    hashtags: Tuple[str, ...] = ()
    source_snippet_id: Optional[str] = None
    enabled: bool = True
    status_data: StatusData = field(default_factory=Idle)

    @property
    def status(self) -> PostState:
        return self.status_data.state

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATES

    def with_status(self, status_data: StatusData) -> Post:
        return replace(self, status_data=status_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "destination": self.destination.value,
            "createdAt": self.created_at,
            "clipId": self.clip_id,
            "format": self.format,
            "renderScale": self.render_scale,
            "textContent": self.text_content,
            "title": self.title,
            "description": self.description,
            "hashtags": list(self.hashtags),
            "sourceSnippetId": self.source_snippet_id,
            "enabled": self.enabled,
            "statusData": self.status_data.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Post:
        return cls(
            id=str(data["id"]),
            destination=Destination.parse(data["destination"]),
            created_at=float(data.get("createdAt", time.time())),
            clip_id=data.get("clipId"),
            format=data.get("format"),
            render_scale=float(data.get("renderScale", 1.0)),
            text_content=data.get("textContent") or "",
            title=data.get("title") or "",
            description=data.get("description") or "",
            hashtags=tuple(data.get("hashtags") or ()),
            source_snippet_id=data.get("sourceSnippetId"),
            enabled=bool(data.get("enabled", True)),
            status_data=status_from_dict(data.get("statusData") or {}),
        )
