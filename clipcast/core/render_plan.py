"""Render plan assembler: the single payload handed to the renderer.

WHY: The external renderer draws pixels; it must not re-derive timing,
grouping or camera decisions. Everything it needs is computed once here:
word frame timings, the caption config, the clip duration, audio trim
points, tracks, background and (optionally) the multicam configuration.

HOW: assemble_render_plan() runs the timing normalizer, resolves the
caption style, and validates the multicam switching timeline by building
a MulticamLayout. The resulting RenderPlan serializes to the renderer's
camelCase JSON (validated with jsonschema against
render_plan_schema.json) and can also answer per-frame queries directly
via frame(f).

RULES:
- Assembly fails fast with ConfigurationError on malformed input; a plan
  that was built is always renderable
- durationInFrames = round((clip_end - clip_start) * fps), at least 1
- audioStartFrame / audioEndFrame are source-relative frames of the clip
- to_dict() output always validates against the schema
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import jsonschema

from clipcast.config import get_video_format
from clipcast.core.captions import (
    CaptionFrameState,
    CaptionGrouper,
    resolve_caption_style,
    to_subtitle_config,
)
from clipcast.core.ir import (
    BackgroundConfig,
    CaptionStyle,
    MulticamSettings,
    SubtitleConfig,
    Track,
    Word,
    WordTiming,
)
from clipcast.core.multicam import MulticamFrameState, MulticamLayout
from clipcast.core.timing import duration_in_frames, seconds_to_frame, to_frames
from clipcast.errors import ConfigurationError

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).resolve().parent / "render_plan_schema.json"

_CACHED_SCHEMA: Optional[dict[str, Any]] = None


def _get_schema() -> dict[str, Any]:
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        with open(_SCHEMA_PATH) as f:
            _CACHED_SCHEMA = json.load(f)
    return _CACHED_SCHEMA


@dataclass(frozen=True)
class FrameState:
    """Combined caption and camera state at one frame."""

    frame: int
    caption: Optional[CaptionFrameState]
    multicam: Optional[MulticamFrameState]


@dataclass(frozen=True)
class RenderPlan:
    """Everything the renderer needs to produce one clip.

    Built by assemble_render_plan(); immutable and safe to share.
    """

    words: tuple[WordTiming, ...]
    subtitle_config: SubtitleConfig
    background: BackgroundConfig
    duration_in_frames: int
    fps: float
    width: int
    height: int
    tracks: tuple[Track, ...] = ()
    multicam: Optional[MulticamSettings] = None
    audio_url: Optional[str] = None
    audio_start_frame: int = 0
    audio_end_frame: int = 0
    _captions: Optional[CaptionGrouper] = field(default=None, repr=False, compare=False)
    _layout: Optional[MulticamLayout] = field(default=None, repr=False, compare=False)

    def frame(self, frame: int) -> FrameState:
        """Caption and multicam state at ``frame`` (pure)."""
        return FrameState(
            frame=frame,
            caption=self._captions.state_at(frame) if self._captions is not None else None,
            multicam=self._layout.state_at(frame) if self._layout is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the renderer payload and validate it.

        Raises:
            jsonschema.ValidationError: If the payload does not conform to
                render_plan_schema.json.
        """
        payload: dict[str, Any] = {
            "words": [w.to_dict() for w in self.words],
            "captionStyle": self.subtitle_config.to_dict(),
            "background": self.background.to_dict(),
            "durationInFrames": self.duration_in_frames,
            "fps": self.fps,
            "width": self.width,
            "height": self.height,
            "tracks": [t.to_dict() for t in sorted(self.tracks, key=lambda t: t.order)],
            "audioStartFrame": self.audio_start_frame,
            "audioEndFrame": self.audio_end_frame,
        }
        if self.audio_url:
            payload["audioUrl"] = self.audio_url
        if self.multicam is not None:
            mc = self.multicam
            payload["multicam"] = {
                "sources": [s.to_dict() for s in mc.sources],
                "timeline": [i.to_dict() for i in mc.timeline],
                "layoutMode": mc.layout_mode,
                "pipEnabled": mc.pip_enabled,
                "pipPositions": [
                    {
                        "videoSourceId": p.video_source_id,
                        "positionX": p.position_x,
                        "positionY": p.position_y,
                    }
                    for p in mc.pip_positions
                ],
                "pipScale": mc.pip_scale,
                "transitionStyle": mc.transition_style,
                "transitionDurationFrames": mc.transition_duration_frames,
                "soloSourceId": mc.solo_source_id,
                "clipStartTime": mc.clip_start_s,
            }

        jsonschema.validate(instance=payload, schema=_get_schema())
        return payload

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def assemble_render_plan(
    words: Sequence[Word],
    clip_start_s: float,
    clip_end_s: float,
    fps: float,
    video_format: str = "9:16",
    caption_style: Optional[CaptionStyle] = None,
    background: Optional[BackgroundConfig] = None,
    tracks: Sequence[Track] = (),
    multicam: Optional[MulticamSettings] = None,
    audio_url: Optional[str] = None,
) -> RenderPlan:
    """Build a validated RenderPlan for one clip.

    Args:
        words: Transcript words for the source, in source seconds.
        clip_start_s: Clip window start in source seconds.
        clip_end_s: Clip window end in source seconds.
        fps: Output frame rate.
        video_format: One of the VIDEO_FORMATS keys.
        caption_style: The clip's own caption style; falls back to the
            first captions track's style, then the default.
        background: Canvas background; solid black when omitted.
        tracks: Overlay/audio/caption tracks, passed through in order.
        multicam: Camera configuration with a frame switching timeline.
        audio_url: Source audio, trimmed by audioStartFrame/audioEndFrame.

    Raises:
        ConfigurationError: On a non-positive fps, an empty or reversed
            clip window, an unknown format, bad caption grouping, or a
            malformed multicam configuration.
    """
    if fps <= 0:
        raise ConfigurationError("fps must be positive, got {}".format(fps))
    if clip_start_s < 0:
        raise ConfigurationError("clip_start_s must be >= 0, got {}".format(clip_start_s))
    if clip_end_s <= clip_start_s:
        raise ConfigurationError(
            "Clip window is empty: start {} >= end {}".format(clip_start_s, clip_end_s)
        )
    fmt = get_video_format(video_format)

    duration = max(1, duration_in_frames(clip_start_s, clip_end_s, fps))
    timings = to_frames(words, clip_start_s, clip_end_s, fps)
    style = resolve_caption_style(caption_style, tracks)
    subtitle_config = to_subtitle_config(style)
    captions = CaptionGrouper(timings, subtitle_config, fps)

    layout = None
    if multicam is not None:
        layout = MulticamLayout(multicam, duration, fmt.width, fmt.height, fps)

    plan = RenderPlan(
        words=tuple(timings),
        subtitle_config=subtitle_config,
        background=background or BackgroundConfig(),
        duration_in_frames=duration,
        fps=fps,
        width=fmt.width,
        height=fmt.height,
        tracks=tuple(tracks),
        multicam=multicam,
        audio_url=audio_url,
        audio_start_frame=seconds_to_frame(clip_start_s, fps),
        audio_end_frame=seconds_to_frame(clip_end_s, fps),
        _captions=captions,
        _layout=layout,
    )
    logger.debug(
        "Assembled render plan: %d frames @ %s fps, %d words, %d cues, multicam=%s",
        duration, fps, len(timings), len(captions.cues), multicam is not None,
    )
    return plan
