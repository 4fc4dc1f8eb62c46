"""Intermediate representation dataclasses for clip composition.

WHY: The timing normalizer, caption grouper, multicam engine and render
plan assembler all pass the same shapes around: words with timing, frame
timings, caption style, camera sources and switching intervals. One set of
well-typed dataclasses keeps these stages decoupled and makes the render
plan contract explicit.

HOW: Input shapes (Word, CaptionStyle, VideoSource, ...) have ``from_dict``
factories for JSON coming from the transcription collaborator, the CLI and
the HTTP API. Derived shapes (WordTiming, Cue, SubtitleConfig) are frozen
so a computed plan can be shared between threads and evaluated for any
frame without copying.

RULES:
- Word times are float seconds, clip-source relative
- Frame bounds are integer frame indices at the plan's fps
- SwitchingInterval is half-open: [start_frame, end_frame)
- Confidence is pass-through metadata, never a timing input
- Style fields the core does not interpret (fonts, colors) pass through
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

CAPTION_ANIMATIONS = ("word-by-word", "karaoke", "bounce", "typewriter")
SUBTITLE_ANIMATIONS = ("fade", "pop", "typewriter", "karaoke")
LAYOUT_MODES = ("active-speaker", "side-by-side", "grid", "solo")
TRANSITION_STYLES = ("cut", "crossfade")


@dataclass(frozen=True)
class Word:
    """One transcribed word with source-relative timing in seconds."""

    text: str
    start_s: float
    end_s: float
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: dict) -> Word:
        """Parse a word from the transcription collaborator's JSON.

        RULES:
        - Accepts ``start``/``end`` (collaborator shape) or ``start_s``/``end_s``
        - confidence defaults to 1.0 when absent
        """
        start = data["start"] if "start" in data else data["start_s"]
        end = data["end"] if "end" in data else data["end_s"]
        return cls(
            text=str(data.get("text", "")),
            start_s=float(start),
            end_s=float(end),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass(frozen=True)
class WordTiming:
    """A word positioned on the output frame grid.

    RULES:
    - start_frame <= end_frame, both within [0, duration_in_frames]
    - start_s / end_s are clip-relative seconds (clamped to the clip)
    """

    text: str
    start_frame: int
    end_frame: int
    start_s: float
    end_s: float
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "startFrame": self.start_frame,
            "endFrame": self.end_frame,
            "startTime": self.start_s,
            "endTime": self.end_s,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class CaptionStyle:
    """User-facing caption style as stored on a clip or caption track.

    RULES:
    - animation is one of CAPTION_ANIMATIONS
    - words_per_group >= 1
    - highlight_scale of None or 0 disables the per-word scale ramp
    """

    animation: str = "word-by-word"
    words_per_group: int = 4
    font_family: str = "Montserrat"
    font_size: int = 48
    font_weight: int = 800
    primary_color: str = "#FFFFFF"
    highlight_color: Optional[str] = "#FFD700"
    highlight_scale: Optional[float] = None
    background_color: Optional[str] = "rgba(0,0,0,0.7)"
    position: str = "center"
    position_x: float = 50.0
    position_y: float = 50.0
    preset: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> CaptionStyle:
        """Parse a caption style, keeping defaults for absent fields.

        ``words_per_line`` is accepted as an alias of ``words_per_group``.
        """
        defaults = cls()
        words_per_group = data.get("words_per_group", data.get("words_per_line"))
        return cls(
            animation=data.get("animation") or defaults.animation,
            words_per_group=int(words_per_group) if words_per_group is not None else defaults.words_per_group,
            font_family=data.get("font_family") or defaults.font_family,
            font_size=int(data.get("font_size") or defaults.font_size),
            font_weight=int(data.get("font_weight") or defaults.font_weight),
            primary_color=data.get("primary_color") or defaults.primary_color,
            highlight_color=data.get("highlight_color", defaults.highlight_color),
            highlight_scale=data.get("highlight_scale"),
            background_color=data.get("background_color", defaults.background_color),
            position=data.get("position") or defaults.position,
            position_x=float(data.get("position_x", defaults.position_x)),
            position_y=float(data.get("position_y", defaults.position_y)),
            preset=data.get("preset"),
        )


@dataclass(frozen=True)
class SubtitleConfig:
    """Renderer-facing caption configuration derived from a CaptionStyle.

    RULES:
    - animation is one of SUBTITLE_ANIMATIONS
    - highlight_scale is 0 when no per-word scale ramp is wanted
    """

    animation: str
    words_per_group: int
    font_family: str
    font_size: int
    font_weight: int
    color: str
    highlight_color: str
    highlight_scale: float
    position: str
    position_x: float
    position_y: float
    background_color: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "animation": self.animation,
            "wordsPerGroup": self.words_per_group,
            "fontFamily": self.font_family,
            "fontSize": self.font_size,
            "fontWeight": self.font_weight,
            "color": self.color,
            "highlightColor": self.highlight_color,
            "highlightScale": self.highlight_scale,
            "backgroundColor": self.background_color,
            "position": self.position,
            "positionX": self.position_x,
            "positionY": self.position_y,
        }


@dataclass(frozen=True)
class Cue:
    """A contiguous group of word timings shown together as one caption.

    RULES:
    - index is the group index (word_index // words_per_group)
    - first_word_index is the position of words[0] in the full sequence
    - start_frame / end_frame are the min start / max end of its words
    """

    index: int
    first_word_index: int
    words: tuple[WordTiming, ...]
    start_frame: int
    end_frame: int

    @property
    def text(self) -> str:
        return " ".join(w.text for w in self.words)


@dataclass(frozen=True)
class VideoSource:
    """One camera or feed available to the multicam engine."""

    id: str
    label: str = ""
    sync_offset_ms: float = 0.0
    crop_offset_x: float = 50.0
    crop_offset_y: float = 50.0
    width: Optional[int] = None
    height: Optional[int] = None
    source_type: str = "speaker"  # "speaker", "wide" or "broll"
    display_order: int = 0
    person_id: Optional[str] = None
    video_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> VideoSource:
        return cls(
            id=str(data["id"]),
            label=str(data.get("label", "")),
            sync_offset_ms=float(data.get("sync_offset_ms", 0.0)),
            crop_offset_x=float(data.get("crop_offset_x", 50.0)),
            crop_offset_y=float(data.get("crop_offset_y", 50.0)),
            width=data.get("width"),
            height=data.get("height"),
            source_type=data.get("source_type", "speaker"),
            display_order=int(data.get("display_order", 0)),
            person_id=data.get("person_id"),
            video_url=data.get("video_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "syncOffsetMs": self.sync_offset_ms,
            "cropOffsetX": self.crop_offset_x,
            "cropOffsetY": self.crop_offset_y,
            "width": self.width,
            "height": self.height,
            "sourceType": self.source_type,
            "videoUrl": self.video_url,
        }


@dataclass(frozen=True)
class SwitchingInterval:
    """Which source is active over the half-open frame range [start, end)."""

    start_frame: int
    end_frame: int
    video_source_id: str

    @classmethod
    def from_dict(cls, data: dict) -> SwitchingInterval:
        return cls(
            start_frame=int(data["start_frame"]),
            end_frame=int(data["end_frame"]),
            video_source_id=str(data["video_source_id"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "startFrame": self.start_frame,
            "endFrame": self.end_frame,
            "videoSourceId": self.video_source_id,
        }


@dataclass(frozen=True)
class TimeInterval:
    """A switching interval in seconds, before conversion to frames."""

    start_s: float
    end_s: float
    video_source_id: str


@dataclass(frozen=True)
class SpeakerSegment:
    """A diarized speaker turn, in source seconds."""

    speaker_label: str
    start_s: float
    end_s: float
    speaker_id: Optional[str] = None


@dataclass(frozen=True)
class MulticamOverride:
    """A manual camera choice that wins over speaker-driven switching."""

    start_s: float
    end_s: float
    video_source_id: str


@dataclass(frozen=True)
class PipPlacement:
    """Picture-in-picture inset center for one source, in percent of the frame."""

    video_source_id: str
    position_x: float
    position_y: float

    @classmethod
    def from_dict(cls, data: dict) -> PipPlacement:
        return cls(
            video_source_id=str(data["video_source_id"]),
            position_x=float(data["position_x"]),
            position_y=float(data["position_y"]),
        )


@dataclass(frozen=True)
class MulticamSettings:
    """Everything the multicam engine needs besides the frame number.

    RULES:
    - timeline must tile [0, duration_in_frames), checked at assembly
    - solo_source_id is only read in "solo" mode
    - transition_duration_frames of 0 behaves like a cut
    """

    sources: tuple[VideoSource, ...]
    timeline: tuple[SwitchingInterval, ...]
    layout_mode: str = "active-speaker"
    pip_enabled: bool = False
    pip_positions: tuple[PipPlacement, ...] = ()
    pip_scale: float = 0.2
    transition_style: str = "cut"
    transition_duration_frames: int = 0
    solo_source_id: Optional[str] = None
    clip_start_s: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> MulticamSettings:
        return cls(
            sources=tuple(VideoSource.from_dict(s) for s in data.get("sources", [])),
            timeline=tuple(SwitchingInterval.from_dict(i) for i in data.get("timeline", [])),
            layout_mode=data.get("layout_mode", "active-speaker"),
            pip_enabled=bool(data.get("pip_enabled", False)),
            pip_positions=tuple(PipPlacement.from_dict(p) for p in data.get("pip_positions", [])),
            pip_scale=float(data.get("pip_scale", 0.2)),
            transition_style=data.get("transition_style", "cut"),
            transition_duration_frames=int(data.get("transition_duration_frames", 0)),
            solo_source_id=data.get("solo_source_id"),
            clip_start_s=float(data.get("clip_start_s", 0.0)),
        )


@dataclass(frozen=True)
class BackgroundConfig:
    """Canvas background behind the video/caption layers (opaque to the core)."""

    type: str = "solid"  # "solid", "gradient", "image" or "video"
    color: Optional[str] = "#000000"
    gradient_colors: tuple[str, ...] = ()
    gradient_direction: Optional[float] = None
    image_path: Optional[str] = None
    video_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> BackgroundConfig:
        return cls(
            type=data.get("type", "solid"),
            color=data.get("color", "#000000"),
            gradient_colors=tuple(data.get("gradient_colors", ())),
            gradient_direction=data.get("gradient_direction"),
            image_path=data.get("image_path"),
            video_path=data.get("video_path"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.color is not None:
            result["color"] = self.color
        if self.gradient_colors:
            result["gradientColors"] = list(self.gradient_colors)
        if self.gradient_direction is not None:
            result["gradientDirection"] = self.gradient_direction
        if self.image_path:
            result["imagePath"] = self.image_path
        if self.video_path:
            result["videoPath"] = self.video_path
        return result


@dataclass(frozen=True)
class TrackClip:
    """One item on an overlay track, already on the frame grid."""

    id: str
    type: str
    start_frame: int
    duration_frames: int
    asset_url: Optional[str] = None
    position_x: float = 50.0
    position_y: float = 50.0

    @classmethod
    def from_dict(cls, data: dict) -> TrackClip:
        return cls(
            id=str(data["id"]),
            type=data.get("type", "animation"),
            start_frame=int(data.get("start_frame", 0)),
            duration_frames=int(data.get("duration_frames", 0)),
            asset_url=data.get("asset_url"),
            position_x=float(data.get("position_x", 50.0)),
            position_y=float(data.get("position_y", 50.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "startFrame": self.start_frame,
            "durationFrames": self.duration_frames,
            "assetUrl": self.asset_url,
            "positionX": self.position_x,
            "positionY": self.position_y,
        }


@dataclass(frozen=True)
class Track:
    """An ordered overlay/audio/caption track."""

    id: str
    type: str
    order: int = 0
    clips: tuple[TrackClip, ...] = field(default_factory=tuple)
    caption_style: Optional[CaptionStyle] = None

    @classmethod
    def from_dict(cls, data: dict) -> Track:
        style = data.get("caption_style")
        return cls(
            id=str(data["id"]),
            type=data.get("type", "video-overlay"),
            order=int(data.get("order", 0)),
            clips=tuple(TrackClip.from_dict(c) for c in data.get("clips", [])),
            caption_style=CaptionStyle.from_dict(style) if style else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "order": self.order,
            "clips": [c.to_dict() for c in self.clips],
        }
