"""FastAPI application exposing the post store, the scheduler and render plans.

WHY: The editor UI (and curl, and automation tools) need one HTTP surface
to schedule posts, start and cancel publishing, watch progress, and
request render plans for preview. FastAPI gives request validation,
OpenAPI docs and background tasks for free.

HOW: A module-level PublishStore is the single source of truth; configure()
swaps in a persisted store, a PublishScheduler and a TokenStore at
startup (the CLI's ``serve`` does this). POST /publishing/start queues
posts and hands PublishScheduler.run() to BackgroundTasks, so the
request returns immediately while posts publish one at a time.

RULES:
- Store refusals map to HTTP codes: unknown post 404, illegal state 409,
  bad input (ConfigurationError/ValueError) 400
- Publishing endpoints return 503 when no scheduler is configured
- Missing adapters are rejected with 400 before anything is queued
- Fixed /posts/... routes are registered before /posts/{post_id}
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import Response

from clipcast import __version__
from clipcast.core.ir import BackgroundConfig, CaptionStyle, MulticamSettings, Track, Word
from clipcast.core.render_plan import assemble_render_plan
from clipcast.errors import ConfigurationError
from clipcast.publish.models import Post
from clipcast.publish.platforms import get_platform_config, validate_post
from clipcast.publish.scheduler import PublishScheduler, status_view
from clipcast.publish.store import EDITABLE_STATES, PublishStore
from clipcast.publish.tokens import TokenStore
from clipcast.server.models import (
    CountResponse,
    ErrorResponse,
    HealthResponse,
    PostCreate,
    PostResponse,
    PostStatusResponse,
    PostUpdate,
    ProgressResponse,
    RenderPlanRequest,
    ValidationResponse,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

post_store = PublishStore()
scheduler: Optional[PublishScheduler] = None
token_store: Optional[TokenStore] = None


def configure(
    store: Optional[PublishStore] = None,
    publish_scheduler: Optional[PublishScheduler] = None,
    tokens: Optional[TokenStore] = None,
) -> None:
    """Replace the module-level store, scheduler and token store."""
    global post_store, scheduler, token_store
    if store is not None:
        post_store = store
    scheduler = publish_scheduler
    token_store = tokens


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load persisted posts on startup, close adapter clients on shutdown."""
    if post_store.path is not None:
        post_store.load()
    yield
    if scheduler is not None:
        closed = set()
        for adapter in scheduler.adapters.values():
            if id(adapter) not in closed:
                closed.add(id(adapter))
                await adapter.aclose()


app = FastAPI(
    lifespan=lifespan,
    title="clipcast API",
    description=(
        "Schedule captioned clips for publishing to social video platforms, "
        "run the single-flight publish queue, watch progress, and assemble "
        "render plans for the external renderer."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _post_to_response(post: Post) -> PostResponse:
    """Convert a frozen Post to a PostResponse Pydantic model."""
    return PostResponse(
        id=post.id,
        destination=post.destination.value,
        created_at=post.created_at,
        clip_id=post.clip_id,
        format=post.format,
        render_scale=post.render_scale,
        text_content=post.text_content,
        title=post.title,
        description=post.description,
        hashtags=list(post.hashtags),
        source_snippet_id=post.source_snippet_id,
        enabled=post.enabled,
        status=post.status.value,
        status_data=post.status_data.to_dict(),
    )


def _get_post_or_404(post_id: str) -> Post:
    post = post_store.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found: {}".format(post_id))
    return post


def _require_scheduler() -> PublishScheduler:
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Publishing is not configured on this server")
    return scheduler


async def _run_scheduler(publish_scheduler: PublishScheduler) -> None:
    """Background task: drain the queue, logging a configuration failure."""
    try:
        await publish_scheduler.run()
    except ConfigurationError:
        logger.exception("Publish run aborted")


def _apply_update(post: Post, update: PostUpdate) -> Optional[Post]:
    """Apply each provided field through the store's setters.

    Returns None as soon as the store refuses an edit.
    """
    fields = update.model_fields_set
    result: Optional[Post] = post
    if "clip_id" in fields:
        result = post_store.set_post_clip(post.id, update.clip_id)
    if result is not None and "format" in fields and update.format is not None:
        result = post_store.set_post_format(post.id, update.format)
    if result is not None and "render_scale" in fields and update.render_scale is not None:
        result = post_store.set_post_render_scale(post.id, update.render_scale)
    if result is not None and "text_content" in fields and update.text_content is not None:
        result = post_store.set_post_text(post.id, update.text_content, update.source_snippet_id)
    if result is not None and "title" in fields and update.title is not None:
        result = post_store.set_post_title(post.id, update.title)
    if result is not None and "description" in fields and update.description is not None:
        result = post_store.set_post_description(
            post.id, update.description, update.source_snippet_id
        )
    if result is not None and "hashtags" in fields and update.hashtags is not None:
        result = post_store.set_post_hashtags(post.id, update.hashtags)
    if result is not None and update.enabled is not None and result.enabled != update.enabled:
        result = post_store.toggle_post(post.id)
    return result


# ---------------------------------------------------------------------------
# Endpoints: Posts
# ---------------------------------------------------------------------------


@app.get(
    "/posts",
    response_model=List[PostResponse],
    tags=["posts"],
    summary="List posts",
    description="Returns every post in creation order with its current status.",
)
async def list_posts() -> List[PostResponse]:
    return [_post_to_response(p) for p in post_store.list_posts()]


@app.post(
    "/posts",
    response_model=PostResponse,
    status_code=201,
    tags=["posts"],
    summary="Schedule a post",
    description="Create an idle post for one destination. It is published by POST /publishing/start.",
    responses={400: {"model": ErrorResponse, "description": "Unknown format"}},
)
async def create_post(body: PostCreate) -> PostResponse:
    try:
        post = post_store.create_post(
            destination=body.destination,
            clip_id=body.clip_id,
            format=body.format,
            text_content=body.text_content,
            title=body.title,
            description=body.description,
            hashtags=[tag.strip().lstrip("#") for tag in body.hashtags if tag.strip().lstrip("#")],
            source_snippet_id=body.source_snippet_id,
            enabled=body.enabled,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _post_to_response(post)


@app.post(
    "/posts/remove-completed",
    response_model=CountResponse,
    tags=["posts"],
    summary="Remove completed posts",
    description="Deletes every completed post and returns how many were removed.",
)
async def remove_completed() -> CountResponse:
    return CountResponse(count=post_store.remove_completed())


@app.post(
    "/posts/enable-all",
    response_model=CountResponse,
    tags=["posts"],
    summary="Enable all editable posts",
)
async def enable_all() -> CountResponse:
    return CountResponse(count=post_store.enable_all())


@app.post(
    "/posts/disable-all",
    response_model=CountResponse,
    tags=["posts"],
    summary="Disable all editable posts",
)
async def disable_all() -> CountResponse:
    return CountResponse(count=post_store.disable_all())


@app.get(
    "/posts/{post_id}",
    response_model=PostResponse,
    tags=["posts"],
    summary="Get a post",
    responses={404: {"model": ErrorResponse, "description": "Post not found"}},
)
async def get_post(post_id: str) -> PostResponse:
    return _post_to_response(_get_post_or_404(post_id))


@app.patch(
    "/posts/{post_id}",
    response_model=PostResponse,
    tags=["posts"],
    summary="Edit a post",
    description="Change content fields of an idle or failed post. Omitted fields are unchanged.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid format or render scale"},
        404: {"model": ErrorResponse, "description": "Post not found"},
        409: {"model": ErrorResponse, "description": "Post is queued, in flight or completed"},
    },
)
async def update_post(post_id: str, body: PostUpdate) -> PostResponse:
    post = _get_post_or_404(post_id)
    if post.status not in EDITABLE_STATES:
        raise HTTPException(
            status_code=409,
            detail="Post cannot be edited while {}".format(post.status.value),
        )
    try:
        updated = _apply_update(post, body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if updated is None:
        raise HTTPException(status_code=409, detail="Post changed state during the edit")
    return _post_to_response(updated)


@app.delete(
    "/posts/{post_id}",
    status_code=204,
    tags=["posts"],
    summary="Delete a post",
    responses={
        404: {"model": ErrorResponse, "description": "Post not found"},
        409: {"model": ErrorResponse, "description": "Post is rendering or uploading"},
    },
)
async def delete_post(post_id: str) -> Response:
    post = _get_post_or_404(post_id)
    if not post_store.remove_post(post_id):
        raise HTTPException(
            status_code=409,
            detail="Post cannot be removed while {}".format(post.status.value),
        )
    return Response(status_code=204)


@app.post(
    "/posts/{post_id}/duplicate",
    response_model=PostResponse,
    status_code=201,
    tags=["posts"],
    summary="Duplicate a post",
    description="Copies the post's content into a new idle post.",
    responses={404: {"model": ErrorResponse, "description": "Post not found"}},
)
async def duplicate_post(post_id: str) -> PostResponse:
    duplicate = post_store.duplicate_post(post_id)
    if duplicate is None:
        raise HTTPException(status_code=404, detail="Post not found: {}".format(post_id))
    return _post_to_response(duplicate)


@app.get(
    "/posts/{post_id}/status",
    response_model=PostStatusResponse,
    tags=["posts"],
    summary="Get a post's publish status",
    description="Upload/processing progress, video id and error message, as shown by the UI.",
    responses={404: {"model": ErrorResponse, "description": "Post not found"}},
)
async def get_post_status(post_id: str) -> PostStatusResponse:
    view = status_view(_get_post_or_404(post_id))
    return PostStatusResponse(
        id=view["id"],
        status=view["status"],
        upload_progress=view["uploadProgress"],
        processing_progress=view["processingProgress"],
        video_id=view["videoId"],
        error_message=view["errorMessage"],
    )


@app.get(
    "/posts/{post_id}/validation",
    response_model=ValidationResponse,
    tags=["posts"],
    summary="Validate a post",
    description=(
        "Check the post against its destination's limits. Pass the length of "
        "the referenced clip; without it a post with a clip reports the clip as missing."
    ),
    responses={404: {"model": ErrorResponse, "description": "Post not found"}},
)
async def get_post_validation(
    post_id: str,
    clip_duration_s: Optional[float] = Query(
        default=None, ge=0, description="Duration of the post's clip in seconds."
    ),
) -> ValidationResponse:
    post = _get_post_or_404(post_id)
    is_connected = True
    config = get_platform_config(post.destination)
    if config.requires_auth and config.connection_platform and token_store is not None:
        is_connected = token_store.get_token(config.connection_platform) is not None
    result = validate_post(post, clip_duration_s=clip_duration_s, is_connected=is_connected)
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@app.post(
    "/posts/{post_id}/retry",
    response_model=PostResponse,
    tags=["publishing"],
    summary="Retry a failed post",
    description="Moves a failed post back to the queue and starts a publish run.",
    responses={
        404: {"model": ErrorResponse, "description": "Post not found"},
        409: {"model": ErrorResponse, "description": "Post is not failed"},
        503: {"model": ErrorResponse, "description": "Publishing not configured"},
    },
)
async def retry_post(post_id: str, background_tasks: BackgroundTasks) -> PostResponse:
    publish_scheduler = _require_scheduler()
    post = _get_post_or_404(post_id)
    if not post_store.retry_post(post_id):
        raise HTTPException(
            status_code=409,
            detail="Only failed posts can be retried (current status: {})".format(post.status.value),
        )
    background_tasks.add_task(_run_scheduler, publish_scheduler)
    return _post_to_response(_get_post_or_404(post_id))


# ---------------------------------------------------------------------------
# Endpoints: Publishing
# ---------------------------------------------------------------------------


@app.post(
    "/publishing/start",
    response_model=CountResponse,
    tags=["publishing"],
    summary="Start publishing",
    description=(
        "Queues every enabled idle or failed post and publishes the queue in "
        "the background, one post at a time. Returns the number of posts queued."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "A destination has no publish adapter"},
        503: {"model": ErrorResponse, "description": "Publishing not configured"},
    },
)
async def start_publishing(background_tasks: BackgroundTasks) -> CountResponse:
    publish_scheduler = _require_scheduler()
    candidates = [p for p in post_store.get_enabled_posts() if p.status in EDITABLE_STATES]
    try:
        publish_scheduler.check_adapters(candidates)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    count = post_store.start_publishing()
    if count:
        background_tasks.add_task(_run_scheduler, publish_scheduler)
    return CountResponse(count=count)


@app.post(
    "/publishing/cancel",
    response_model=CountResponse,
    tags=["publishing"],
    summary="Cancel queued posts",
    description="Returns every queued post to idle. The post in flight finishes normally.",
)
async def cancel_publishing() -> CountResponse:
    return CountResponse(count=post_store.cancel_publishing())


@app.post(
    "/publishing/retry-failed",
    response_model=CountResponse,
    tags=["publishing"],
    summary="Retry every failed post",
    responses={503: {"model": ErrorResponse, "description": "Publishing not configured"}},
)
async def retry_all_failed(background_tasks: BackgroundTasks) -> CountResponse:
    publish_scheduler = _require_scheduler()
    count = post_store.retry_all_failed()
    if count:
        background_tasks.add_task(_run_scheduler, publish_scheduler)
    return CountResponse(count=count)


@app.get(
    "/publishing/progress",
    response_model=ProgressResponse,
    tags=["publishing"],
    summary="Overall publishing progress",
)
async def get_progress() -> ProgressResponse:
    progress = post_store.get_overall_progress()
    return ProgressResponse(
        total=progress["total"],
        completed=progress["completed"],
        failed=progress["failed"],
        in_progress=progress["inProgress"],
        queued=progress["queued"],
        percent=progress["percent"],
        is_publishing=post_store.is_publishing,
        current_post_id=scheduler.current_post_id if scheduler is not None else None,
    )


# ---------------------------------------------------------------------------
# Endpoints: Render plans
# ---------------------------------------------------------------------------


@app.post(
    "/render-plans",
    tags=["render"],
    summary="Assemble a render plan",
    description=(
        "Converts clip timing, caption style, tracks and multicam settings into "
        "the frame-indexed payload consumed by the renderer."
    ),
    responses={400: {"model": ErrorResponse, "description": "Invalid clip or multicam configuration"}},
)
async def create_render_plan(body: RenderPlanRequest) -> Dict[str, Any]:
    try:
        plan = assemble_render_plan(
            words=[Word.from_dict(w) for w in body.words],
            clip_start_s=body.clip_start,
            clip_end_s=body.clip_end,
            fps=body.fps,
            video_format=body.format,
            caption_style=CaptionStyle.from_dict(body.caption_style) if body.caption_style else None,
            background=BackgroundConfig.from_dict(body.background) if body.background else None,
            tracks=[Track.from_dict(t) for t in body.tracks],
            multicam=MulticamSettings.from_dict(body.multicam) if body.multicam else None,
            audio_url=body.audio_url,
        )
    except (ConfigurationError, KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid render plan input: {}".format(exc))
    return plan.to_dict()


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Serve the app with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
