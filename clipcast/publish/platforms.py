"""Per-destination platform limits, post text building and validation.

WHY: Each destination accepts different formats, durations and text
lengths, and some need an OAuth connection. Checking a post against those
limits before it is queued turns a slow platform-side rejection into an
immediate, readable error.

HOW: PLATFORM_CONFIGS maps every Destination to a frozen PlatformConfig.
build_post_text() renders the caption the platform receives (text, blank
line, prefixed hashtags). validate_post() returns errors (block
publishing) and warnings (within 10% of a limit, or not connected).
build_publish_content() packages what an adapter needs.

RULES:
- YouTube destinations use title/description; others use text_content
- A value above 90% of a limit is a warning, above the limit an error
- Hashtags are only appended when the platform supports them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from clipcast.publish.models import Destination, Post


@dataclass(frozen=True)
class PlatformConfig:
    """Limits and capabilities of one publish destination."""

    destination: Destination
    name: str
    short_name: str
    default_format: str
    supported_formats: Tuple[str, ...]
    max_duration_s: Optional[float]
    max_caption_length: Optional[int]
    supports_hashtags: bool
    hashtag_prefix: str
    requires_auth: bool
    requires_clip: bool
    connection_platform: Optional[str] = None
    title_max_length: Optional[int] = None
    description_max_length: Optional[int] = None

    @property
    def uses_title(self) -> bool:
        return self.title_max_length is not None


PLATFORM_CONFIGS: Dict[Destination, PlatformConfig] = {
    Destination.YOUTUBE_SHORTS: PlatformConfig(
        Destination.YOUTUBE_SHORTS, "YouTube Shorts", "YT Shorts",
        "9:16", ("9:16", "1:1"), 60, 100, True, "", True, True,
        connection_platform="youtube", title_max_length=100, description_max_length=5000,
    ),
    Destination.YOUTUBE_VIDEO: PlatformConfig(
        Destination.YOUTUBE_VIDEO, "YouTube Video", "YouTube",
        "16:9", ("16:9", "9:16", "1:1"), None, 5000, True, "", True, True,
        connection_platform="youtube", title_max_length=100, description_max_length=5000,
    ),
    Destination.INSTAGRAM_REELS: PlatformConfig(
        Destination.INSTAGRAM_REELS, "Instagram Reels", "IG Reels",
        "9:16", ("9:16",), 90, 2200, True, "#", True, True,
        connection_platform="instagram",
    ),
    Destination.INSTAGRAM_POST: PlatformConfig(
        Destination.INSTAGRAM_POST, "Instagram Post", "IG Post",
        "1:1", ("1:1", "4:5", "16:9"), 60, 2200, True, "#", True, True,
        connection_platform="instagram",
    ),
    Destination.X: PlatformConfig(
        Destination.X, "X (Twitter)", "X",
        "16:9", ("16:9", "1:1", "9:16"), 140, 280, True, "#", True, False,
        connection_platform="x",
    ),
    Destination.TIKTOK: PlatformConfig(
        Destination.TIKTOK, "TikTok", "TikTok",
        "9:16", ("9:16",), 180, 2200, True, "#", True, True,
        connection_platform="tiktok",
    ),
    Destination.LOCAL: PlatformConfig(
        Destination.LOCAL, "Save to Disk", "Local",
        "9:16", ("9:16", "1:1", "16:9", "4:5"), None, None, False, "", False, False,
    ),
}


def get_platform_config(destination: Destination) -> PlatformConfig:
    return PLATFORM_CONFIGS[Destination.parse(destination)]


def build_post_text(post: Post, config: PlatformConfig) -> str:
    """Caption text as posted: the text, then hashtags after a blank line."""
    parts: List[str] = []
    if post.text_content:
        parts.append(post.text_content)
    if post.hashtags and config.supports_hashtags:
        parts.append(" ".join(config.hashtag_prefix + tag for tag in post.hashtags))
    return "\n\n".join(parts)


@dataclass
class PostValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _check_length(
    label: str,
    length: int,
    limit: Optional[int],
    result: PostValidation,
) -> None:
    if not limit:
        return
    if length > limit:
        result.errors.append("{} is {}/{} chars".format(label, length, limit))
    elif length > limit * 0.9:
        result.warnings.append("{} approaching {} char limit".format(label, limit))


def validate_post(
    post: Post,
    clip_duration_s: Optional[float] = None,
    is_connected: bool = True,
) -> PostValidation:
    """Check a post against its destination's limits.

    Args:
        post: The post to check.
        clip_duration_s: Length of the referenced clip, or None when the
            clip no longer exists (or the post has no clip).
        is_connected: Whether an account is connected for the destination.

    Returns:
        PostValidation with errors (publishing would fail) and warnings.
    """
    config = get_platform_config(post.destination)
    result = PostValidation()

    if config.uses_title:
        has_text = bool(post.title.strip() or post.description.strip())
    else:
        has_text = bool(post.text_content.strip())

    if not post.clip_id and not has_text:
        result.errors.append("Post must have a clip or text content")
    if config.requires_clip and not post.clip_id:
        result.errors.append("{} requires a clip".format(config.short_name))
    if post.clip_id and clip_duration_s is None:
        result.errors.append("Selected clip no longer exists")

    if post.clip_id and clip_duration_s is not None:
        limit = config.max_duration_s
        if limit and clip_duration_s > limit:
            result.errors.append("Clip is {}s, max is {}s".format(round(clip_duration_s), limit))
        elif limit and clip_duration_s > limit * 0.9:
            result.warnings.append("Close to {}s limit".format(limit))

        if not post.format:
            result.errors.append("Video format required for clip")
        elif post.format not in config.supported_formats:
            result.errors.append(
                "{} format not supported by {}".format(post.format, config.short_name)
            )

    if config.uses_title:
        title = post.title.strip()
        if not title:
            result.errors.append("{} requires a title".format(config.short_name))
        else:
            _check_length("Title", len(title), config.title_max_length, result)
        if post.description:
            _check_length("Description", len(post.description), config.description_max_length, result)
    elif post.text_content:
        _check_length("Text", len(build_post_text(post, config)), config.max_caption_length, result)

    if not post.clip_id and has_text and config.max_caption_length is None:
        result.errors.append("{} requires video content".format(config.short_name))

    if config.requires_auth and not is_connected:
        result.warnings.append("Not connected - will need manual upload")

    return result


@dataclass(frozen=True)
class PublishContent:
    """What a platform adapter needs to publish one rendered post."""

    video_url: str
    caption: str = ""
    title: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()
    destination: str = ""


def build_publish_content(post: Post, video_url: str) -> PublishContent:
    """Assemble the adapter payload for a post whose video has been rendered."""
    config = get_platform_config(post.destination)
    description = post.description
    if config.uses_title and post.hashtags:
        tags_line = " ".join("#" + tag for tag in post.hashtags)
        description = "{}\n\n{}".format(description, tags_line) if description else tags_line
    return PublishContent(
        video_url=video_url,
        caption=build_post_text(post, config),
        title=post.title.strip(),
        description=description,
        tags=post.hashtags,
        destination=post.destination.value,
    )
