"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation.

HOW: Request models mirror the store's create/edit operations; response
models are built from frozen Post objects by the app's helpers. Field
names are snake_case on the wire, matching the rest of the API.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Destination values match clipcast.publish.models.Destination exactly
- Response models never expose adapter or credential details
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from clipcast.publish.models import Destination


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PostCreate(BaseModel):
    """Fields accepted when scheduling a new post.

    RULES:
    - format defaults to the destination's default format
    - hashtags are stored without a leading '#'
    """

    destination: Destination = Field(description="Publish destination.")
    clip_id: Optional[str] = Field(default=None, description="Clip to render and publish.")
    format: Optional[str] = Field(
        default=None,
        description="Output aspect ratio key (e.g. '9:16'). Defaults per destination.",
    )
    text_content: str = Field(default="", description="Caption text for caption-based platforms.")
    title: str = Field(default="", description="Video title (YouTube destinations).")
    description: str = Field(default="", description="Video description (YouTube destinations).")
    hashtags: List[str] = Field(default_factory=list, description="Hashtags, with or without '#'.")
    source_snippet_id: Optional[str] = Field(
        default=None,
        description="Id of the generated snippet the text was taken from.",
    )
    enabled: bool = Field(default=True, description="Whether the post is included in publishing.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "destination": "tiktok",
                "clip_id": "clip-42",
                "format": "9:16",
                "text_content": "The one thing nobody tells you about podcasting",
                "hashtags": ["podcast", "creator"],
            }
        ]
    }}


class PostUpdate(BaseModel):
    """Partial edit of an idle or failed post. Omitted fields are unchanged."""

    clip_id: Optional[str] = Field(default=None, description="New clip id.")
    format: Optional[str] = Field(default=None, description="New output aspect ratio key.")
    render_scale: Optional[float] = Field(
        default=None, gt=0, description="Render resolution multiplier."
    )
    text_content: Optional[str] = Field(default=None, description="New caption text.")
    title: Optional[str] = Field(default=None, description="New title.")
    description: Optional[str] = Field(default=None, description="New description.")
    hashtags: Optional[List[str]] = Field(default=None, description="Replacement hashtag list.")
    source_snippet_id: Optional[str] = Field(
        default=None,
        description="Snippet attribution for text_content/description; cleared when omitted.",
    )
    enabled: Optional[bool] = Field(default=None, description="Include or exclude from publishing.")


class RenderPlanRequest(BaseModel):
    """Inputs for assembling a render plan.

    RULES:
    - words use source-relative seconds ({text, start, end})
    - clip_end must be greater than clip_start
    """

    words: List[Dict[str, Any]] = Field(description="Transcript words: {text, start, end}.")
    clip_start: float = Field(ge=0, description="Clip window start in source seconds.")
    clip_end: float = Field(description="Clip window end in source seconds.")
    fps: float = Field(default=30, gt=0, description="Output frame rate.")
    format: str = Field(default="9:16", description="Output aspect ratio key.")
    caption_style: Optional[Dict[str, Any]] = Field(
        default=None, description="Caption style overrides."
    )
    background: Optional[Dict[str, Any]] = Field(default=None, description="Canvas background.")
    tracks: List[Dict[str, Any]] = Field(default_factory=list, description="Overlay tracks.")
    multicam: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Camera sources, frame switching timeline and layout settings.",
    )
    audio_url: Optional[str] = Field(default=None, description="Source audio URL.")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PostResponse(BaseModel):
    """One post with its current status."""

    id: str = Field(description="Unique post identifier (UUID hex).")
    destination: str = Field(description="Publish destination.")
    created_at: float = Field(description="Creation timestamp (Unix epoch seconds).")
    clip_id: Optional[str] = Field(default=None, description="Clip id, if any.")
    format: Optional[str] = Field(default=None, description="Output aspect ratio key.")
    render_scale: float = Field(description="Render resolution multiplier.")
    text_content: str = Field(description="Caption text.")
    title: str = Field(description="Title.")
    description: str = Field(description="Description.")
    hashtags: List[str] = Field(description="Hashtags without '#'.")
    source_snippet_id: Optional[str] = Field(default=None, description="Snippet attribution.")
    enabled: bool = Field(description="Included in publishing.")
    status: str = Field(description="Lifecycle state.")
    status_data: Dict[str, Any] = Field(description="State-specific payload.")


class ValidationResponse(BaseModel):
    """Result of checking a post against its destination's limits."""

    valid: bool = Field(description="True when there are no errors.")
    errors: List[str] = Field(description="Problems that would make publishing fail.")
    warnings: List[str] = Field(description="Non-blocking notes (near limits, not connected).")


class PostStatusResponse(BaseModel):
    """Job status as consumed by the UI.

    RULES:
    - Progress values are 0-100
    - video_id only when completed, error_message only when failed
    """

    id: str = Field(description="Post id.")
    status: str = Field(description="Lifecycle state.")
    upload_progress: float = Field(description="Upload progress, 0-100.")
    processing_progress: float = Field(description="Platform processing progress, 0-100.")
    video_id: Optional[str] = Field(default=None, description="Platform video id when completed.")
    error_message: Optional[str] = Field(default=None, description="Failure message when failed.")


class CountResponse(BaseModel):
    """Number of posts a batch operation changed."""

    count: int = Field(description="Number of posts affected.")


class ProgressResponse(BaseModel):
    """Aggregate publishing progress over enabled posts."""

    total: int = Field(description="Enabled posts.")
    completed: int = Field(description="Completed posts.")
    failed: int = Field(description="Failed posts.")
    in_progress: int = Field(description="Posts rendering or uploading.")
    queued: int = Field(description="Posts waiting in the queue.")
    percent: int = Field(description="Overall progress, 0-100.")
    is_publishing: bool = Field(description="True while anything is queued or in flight.")
    current_post_id: Optional[str] = Field(default=None, description="Post in flight, if any.")


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
