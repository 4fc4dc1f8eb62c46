"""Configuration constants, video formats, and .env loading.

WHY: Centralizes every tunable value (frame rate, caption easing margin,
polling cadence, token refresh threshold, output formats, storage paths)
so they are easy to find and override. Platform client credentials live
in the environment, never in source.

HOW: python-dotenv loads the .env file on import. Constants are plain
module-level values; the ones that operators may need to change read an
environment variable with a sensible default. load_client_credentials()
gives a clear error when a platform's OAuth client is not configured.

RULES:
- Timing constants that affect rendered output (margin, typewriter rate)
  are fixed; changing them changes every render plan
- VIDEO_FORMATS maps aspect-ratio keys to output pixel sizes
- Platform credentials are loaded lazily, only by the adapter that needs them
- All overridable defaults use the CLIPCAST_ prefix
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from clipcast.errors import ConfigurationError

# Load .env from the project root (where the process is started)
load_dotenv()

# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

DEFAULT_FPS = int(os.getenv("CLIPCAST_FPS", "30"))

CAPTION_MARGIN_FRAMES = 5
"""Frames of entrance/exit easing on each side of a cue."""

TYPEWRITER_FRAMES_PER_WORD = 3

DEFAULT_PIP_SCALE = 0.2
DEFAULT_HOLD_PREVIOUS_MS = 1500
DEFAULT_MIN_SHOT_DURATION_MS = 1500


@dataclass(frozen=True)
class VideoFormat:
    """Output canvas for one aspect ratio."""

    key: str
    name: str
    width: int
    height: int

    @property
    def aspect(self) -> float:
        return self.width / self.height


VIDEO_FORMATS: dict[str, VideoFormat] = {
    "9:16": VideoFormat("9:16", "Vertical", 1080, 1920),
    "1:1": VideoFormat("1:1", "Square", 1080, 1080),
    "16:9": VideoFormat("16:9", "Landscape", 1920, 1080),
    "4:5": VideoFormat("4:5", "Portrait", 1080, 1350),
}


def get_video_format(key: str) -> VideoFormat:
    """Look up an output format, raising ConfigurationError for unknown keys."""
    try:
        return VIDEO_FORMATS[key]
    except KeyError:
        raise ConfigurationError(
            "Unknown video format '{}'. Available: {}".format(
                key, ", ".join(sorted(VIDEO_FORMATS))
            )
        ) from None


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

POLL_INTERVAL_S = float(os.getenv("CLIPCAST_POLL_INTERVAL_S", "5"))
POLL_TIMEOUT_S = float(os.getenv("CLIPCAST_POLL_TIMEOUT_S", str(60 * 60)))

TOKEN_REFRESH_THRESHOLD_S = 10 * 60
"""Refresh a credential when less than this many seconds of life remain."""

UPLOAD_RETRY_DELAYS_S: tuple[float, ...] = (0.0, 5.0, 15.0, 45.0)
"""Bounded backoff schedule for transient failures inside one upload attempt."""

POSTS_PATH = Path(os.getenv("CLIPCAST_POSTS_PATH", "clipcast-posts.json"))
TOKENS_PATH = Path(os.getenv("CLIPCAST_TOKENS_PATH", "clipcast-tokens.json"))
RENDER_DIR = Path(os.getenv("CLIPCAST_RENDER_DIR", "renders"))
OUTPUT_DIR = Path(os.getenv("CLIPCAST_OUTPUT_DIR", "published"))

TIKTOK_API_BASE = os.getenv("TIKTOK_API_BASE", "https://open.tiktokapis.com")
TIKTOK_TOKEN_URL = os.getenv(
    "TIKTOK_TOKEN_URL", "https://open.tiktokapis.com/v2/oauth/token/"
)
YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_VIDEO_URL = "https://www.googleapis.com/youtube/v3/videos"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

INSTAGRAM_GRAPH_VERSION = os.getenv("INSTAGRAM_GRAPH_VERSION", "v19.0")
INSTAGRAM_GRAPH_BASE = "https://graph.facebook.com/{}".format(INSTAGRAM_GRAPH_VERSION)

X_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
X_TWEET_URL = "https://api.x.com/2/tweets"

_CLIENT_ENV_VARS: dict[str, tuple[str, str]] = {
    "tiktok": ("TIKTOK_CLIENT_KEY", "TIKTOK_CLIENT_SECRET"),
    "youtube": ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
    "instagram": ("INSTAGRAM_CLIENT_ID", "INSTAGRAM_CLIENT_SECRET"),
    "x": ("X_CONSUMER_KEY", "X_CONSUMER_SECRET"),
}


def load_client_credentials(platform: str) -> tuple[str, str]:
    """Load the OAuth client id/secret pair for a platform.

    WHY: Token refresh needs the app's client credentials. They are
    deployment secrets, so they come from the environment (via .env).

    RULES:
    - Raises ConfigurationError if the platform is unknown or either
      value is missing or empty
    - Never returns placeholder values
    """
    if platform not in _CLIENT_ENV_VARS:
        raise ConfigurationError("No OAuth client configured for platform '{}'".format(platform))
    id_var, secret_var = _CLIENT_ENV_VARS[platform]
    client_id = os.getenv(id_var, "").strip()
    client_secret = os.getenv(secret_var, "").strip()
    if not client_id or not client_secret:
        raise ConfigurationError(
            "{} OAuth client not configured. Add {} and {} to the .env file.".format(
                platform, id_var, secret_var
            )
        )
    return client_id, client_secret
