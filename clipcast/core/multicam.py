"""Multicam layout engine: camera selection, geometry, crop and transitions.

WHY: A multi-camera podcast clip switches between camera feeds as
speakers change, optionally shows inactive speakers as picture-in-picture
insets, and must crop each feed to whatever aspect ratio the output uses.
The editor preview and the final renderer must agree exactly, so every
per-frame decision is a pure function of the frame and the configuration.

HOW: Two stages.
  1. Timeline: compute_switching_timeline() turns diarized speaker
     segments into time intervals (overrides, hold-previous, minimum shot
     length), apply_pre_roll() cuts slightly ahead of each speaker, and
     to_frame_timeline() snaps the result onto a tiling frame timeline.
  2. Per frame: MulticamLayout validates the timeline once (fail fast at
     assembly) and state_at(frame) returns one immutable SourceFrameState
     per source: rectangle, z-order, opacity, crop position and seek frame.

RULES:
- The frame timeline must tile [0, duration_in_frames) with no gap or
  overlap; anything else raises ConfigurationError at construction
- Rectangles are percentages of the canvas, x/y are the top-left corner
- active-speaker: active source full frame; others hidden, or PIP insets
  (drawn above) when PIP is enabled and a placement exists
- side-by-side: first two non-b-roll sources; grid: all non-b-roll
  sources in 1, 2 or 3 columns; solo: one configured source only
- crossfade keeps the previous source mounted for
  transition_duration_frames after a boundary; cut unmounts immediately
- Transitions only apply in active-speaker mode; side-by-side, grid and
  solo keep every visible source at full opacity
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from clipcast.config import DEFAULT_HOLD_PREVIOUS_MS, DEFAULT_MIN_SHOT_DURATION_MS
from clipcast.core.ir import (
    LAYOUT_MODES,
    TRANSITION_STYLES,
    MulticamOverride,
    MulticamSettings,
    PipPlacement,
    SpeakerSegment,
    SwitchingInterval,
    TimeInterval,
    VideoSource,
)
from clipcast.core.timing import round_half_up
from clipcast.errors import ConfigurationError

_TIMELINE_SAMPLE_STEP_S = 0.05
_ASPECT_TOLERANCE = 0.01


# ---------------------------------------------------------------------------
# Frame state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceLayout:
    """Where a source sits on the canvas for the current layout mode."""

    source_id: str
    x: float
    y: float
    width: float
    height: float
    visible: bool
    z_index: int


@dataclass(frozen=True)
class CropWindow:
    """The region of the source frame (in source pixels) that is shown."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class SourceFrameState:
    """Renderer instruction for one source at one frame."""

    source_id: str
    visible: bool
    x: float
    y: float
    width: float
    height: float
    z_index: int
    opacity: float
    crop_object_position: str
    seek_frame: int
    crop: Optional[CropWindow] = None

    def to_dict(self) -> dict:
        return {
            "sourceId": self.source_id,
            "visible": self.visible,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "zIndex": self.z_index,
            "opacity": self.opacity,
            "cropObjectPosition": self.crop_object_position,
            "seekFrame": self.seek_frame,
        }


@dataclass(frozen=True)
class MulticamFrameState:
    """Which camera is live at a frame and how every source is drawn."""

    frame: int
    active_source_id: str
    previous_source_id: Optional[str]
    transition_progress: float
    sources: tuple[SourceFrameState, ...]

    def source(self, source_id: str) -> SourceFrameState:
        for state in self.sources:
            if state.source_id == source_id:
                return state
        raise KeyError(source_id)


# ---------------------------------------------------------------------------
# Timeline validation and lookup
# ---------------------------------------------------------------------------


def validate_switching_timeline(
    timeline: Sequence[SwitchingInterval],
    duration_in_frames: int,
    source_ids: Optional[Iterable[str]] = None,
) -> None:
    """Check that a frame timeline tiles [0, duration_in_frames) exactly.

    RULES:
    - Empty timelines are only valid for zero-length clips
    - Intervals must be in order, non-empty, start at 0, end at the
      duration, and each start where the previous one ended
    - Every interval must reference a known source (when ids are given)
    - Raises ConfigurationError describing the first violation found
    """
    if not timeline:
        if duration_in_frames > 0:
            raise ConfigurationError("Switching timeline is empty but the clip has frames")
        return

    known = set(source_ids) if source_ids is not None else None
    expected_start = 0
    for i, interval in enumerate(timeline):
        if interval.start_frame != expected_start:
            kind = "gap" if interval.start_frame > expected_start else "overlap"
            raise ConfigurationError(
                "Switching timeline {} at interval {}: starts at frame {}, expected {}".format(
                    kind, i, interval.start_frame, expected_start
                )
            )
        if interval.end_frame <= interval.start_frame:
            raise ConfigurationError(
                "Switching interval {} is empty or reversed ({} -> {})".format(
                    i, interval.start_frame, interval.end_frame
                )
            )
        if known is not None and interval.video_source_id not in known:
            raise ConfigurationError(
                "Switching interval {} references unknown video source '{}'".format(
                    i, interval.video_source_id
                )
            )
        expected_start = interval.end_frame

    if expected_start != duration_in_frames:
        raise ConfigurationError(
            "Switching timeline ends at frame {}, clip has {} frames".format(
                expected_start, duration_in_frames
            )
        )


def find_interval_index(timeline: Sequence[SwitchingInterval], frame: int) -> int:
    """Index of the interval containing ``frame`` in a validated timeline.

    Frames before the first or after the last interval clamp to the
    nearest interval so out-of-range queries never raise.
    """
    starts = [interval.start_frame for interval in timeline]
    idx = bisect.bisect_right(starts, frame) - 1
    return max(0, min(idx, len(timeline) - 1))


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def _full_frame(source_id: str, visible: bool, z_index: int) -> SourceLayout:
    return SourceLayout(source_id, 0.0, 0.0, 100.0, 100.0, visible, z_index)


def compute_layout(
    sources: Sequence[VideoSource],
    active_source_id: str,
    layout_mode: str,
    pip_enabled: bool = False,
    pip_positions: Sequence[PipPlacement] = (),
    pip_scale: float = 0.2,
    solo_source_id: Optional[str] = None,
) -> List[SourceLayout]:
    """Position and size for every source in the given layout mode.

    Returns one SourceLayout per source, in source order. Unknown layout
    modes behave like solo on the active source.
    """
    if layout_mode == "active-speaker":
        placements = {p.video_source_id: p for p in pip_positions}
        size = pip_scale * 100.0
        layouts = []
        for s in sources:
            if s.id == active_source_id:
                layouts.append(_full_frame(s.id, True, 1))
            elif pip_enabled and s.id in placements:
                pip = placements[s.id]
                layouts.append(SourceLayout(
                    s.id,
                    pip.position_x - size / 2.0,
                    pip.position_y - size / 2.0,
                    size,
                    size,
                    True,
                    2,
                ))
            else:
                layouts.append(_full_frame(s.id, False, 0))
        return layouts

    if layout_mode == "side-by-side":
        shown = [s.id for s in sources if s.source_type != "broll"][:2]
        width = 100.0 / max(1, len(shown))
        layouts = []
        for s in sources:
            if s.id not in shown:
                layouts.append(_full_frame(s.id, False, 0))
                continue
            idx = shown.index(s.id)
            layouts.append(SourceLayout(s.id, idx * width, 0.0, width, 100.0, True, 1))
        return layouts

    if layout_mode == "grid":
        shown = [s.id for s in sources if s.source_type != "broll"]
        count = len(shown)
        cols = 1 if count <= 1 else 2 if count <= 4 else 3
        rows = max(1, math.ceil(count / cols))
        cell_w = 100.0 / cols
        cell_h = 100.0 / rows
        layouts = []
        for s in sources:
            if s.id not in shown:
                layouts.append(_full_frame(s.id, False, 0))
                continue
            idx = shown.index(s.id)
            col, row = idx % cols, idx // cols
            layouts.append(SourceLayout(s.id, col * cell_w, row * cell_h, cell_w, cell_h, True, 1))
        return layouts

    # solo (and fallback)
    shown_id = active_source_id
    if layout_mode == "solo" and solo_source_id is not None:
        shown_id = solo_source_id
    return [_full_frame(s.id, s.id == shown_id, 1 if s.id == shown_id else 0) for s in sources]


def compute_crop_position(
    source_width: float,
    source_height: float,
    target_aspect: float,
    crop_offset_x: float,
    crop_offset_y: float,
) -> str:
    """CSS object-position for an object-fit: cover crop.

    Matching aspect ratios need no crop and center the frame; otherwise the
    0-100 offsets select where along the overflowing axis the window sits.
    """
    if source_width <= 0 or source_height <= 0:
        return "50% 50%"
    source_aspect = source_width / source_height
    if abs(source_aspect - target_aspect) < _ASPECT_TOLERANCE:
        return "50% 50%"
    x = _clamp(crop_offset_x, 0.0, 100.0)
    y = _clamp(crop_offset_y, 0.0, 100.0)
    return "{}% {}%".format(_fmt(x), _fmt(y))


def compute_crop_window(
    source_width: int,
    source_height: int,
    target_aspect: float,
    crop_offset_x: float = 50.0,
    crop_offset_y: float = 50.0,
) -> CropWindow:
    """Largest target-aspect window inside the source, biased by the offsets.

    The offsets are percentages of the available pan range on each axis
    (50 = centered) and are clamped so the window never leaves the frame.
    """
    if target_aspect <= 0:
        return CropWindow(0, 0, source_width, source_height)
    if source_width / source_height > target_aspect:
        height = source_height
        width = min(source_width, round_half_up(source_height * target_aspect))
    else:
        width = source_width
        height = min(source_height, round_half_up(source_width / target_aspect))
    pan_x = source_width - width
    pan_y = source_height - height
    x = round_half_up(pan_x * _clamp(crop_offset_x, 0.0, 100.0) / 100.0)
    y = round_half_up(pan_y * _clamp(crop_offset_y, 0.0, 100.0) / 100.0)
    return CropWindow(x, y, width, height)


def video_seek_time(absolute_s: float, sync_offset_ms: float) -> float:
    """Position in a source recording for an absolute episode time."""
    return max(0.0, absolute_s + sync_offset_ms / 1000.0)


def available_layout_modes(sources: Sequence[VideoSource]) -> List[str]:
    """Layout modes that make sense for the given sources."""
    non_broll = [s for s in sources if s.source_type != "broll"]
    if len(non_broll) <= 1:
        return ["solo"]
    if len(non_broll) == 2:
        return ["active-speaker", "side-by-side", "solo"]
    return ["active-speaker", "side-by-side", "grid", "solo"]


# ---------------------------------------------------------------------------
# Per-frame engine
# ---------------------------------------------------------------------------


class MulticamLayout:
    """Frame-pure multicam state for one clip.

    WHY: The renderer needs, for every frame, which feeds to draw, where,
    how opaque, and how cropped. Validating the timeline once here means a
    broken configuration is rejected before any frame is rendered.

    HOW: Construct with MulticamSettings, the clip duration in frames,
    the canvas size and fps; call state_at(frame).

    RULES:
    - Construction raises ConfigurationError for malformed configuration
    - state_at() is pure: repeated calls return equal states
    """

    def __init__(
        self,
        settings: MulticamSettings,
        duration_in_frames: int,
        canvas_width: int,
        canvas_height: int,
        fps: float,
    ) -> None:
        if not settings.sources:
            raise ConfigurationError("Multicam requires at least one video source")
        if settings.layout_mode not in LAYOUT_MODES:
            raise ConfigurationError("Unknown layout mode '{}'".format(settings.layout_mode))
        if settings.transition_style not in TRANSITION_STYLES:
            raise ConfigurationError(
                "Unknown transition style '{}'".format(settings.transition_style)
            )
        if not 0 < settings.pip_scale <= 1:
            raise ConfigurationError("pip_scale must be in (0, 1], got {}".format(settings.pip_scale))
        if settings.transition_duration_frames < 0:
            raise ConfigurationError("transition_duration_frames must be >= 0")
        source_ids = [s.id for s in settings.sources]
        if settings.solo_source_id is not None and settings.solo_source_id not in source_ids:
            raise ConfigurationError(
                "Solo source '{}' is not a configured video source".format(settings.solo_source_id)
            )
        validate_switching_timeline(settings.timeline, duration_in_frames, source_ids)

        self.settings = settings
        self.duration_in_frames = duration_in_frames
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self.fps = fps

    def active_source_at(self, frame: int) -> str:
        timeline = self.settings.timeline
        if not timeline:
            return self.settings.sources[0].id
        return timeline[find_interval_index(timeline, frame)].video_source_id

    def state_at(self, frame: int) -> MulticamFrameState:
        settings = self.settings
        timeline = settings.timeline

        active_id = settings.sources[0].id
        previous_id: Optional[str] = None
        progress = 1.0

        if timeline:
            idx = find_interval_index(timeline, frame)
            interval = timeline[idx]
            active_id = interval.video_source_id
            if (
                settings.layout_mode == "active-speaker"
                and settings.transition_style == "crossfade"
                and settings.transition_duration_frames > 0
                and idx > 0
            ):
                into = frame - interval.start_frame
                prior = timeline[idx - 1].video_source_id
                if 0 <= into < settings.transition_duration_frames and prior != active_id:
                    previous_id = prior
                    progress = into / settings.transition_duration_frames

        layouts = compute_layout(
            settings.sources,
            active_id,
            settings.layout_mode,
            settings.pip_enabled,
            settings.pip_positions,
            settings.pip_scale,
            settings.solo_source_id,
        )

        states = tuple(
            self._source_state(source, layout, frame, active_id, previous_id, progress)
            for source, layout in zip(settings.sources, layouts)
        )

        return MulticamFrameState(
            frame=frame,
            active_source_id=active_id,
            previous_source_id=previous_id,
            transition_progress=progress,
            sources=states,
        )

    def _source_state(
        self,
        source: VideoSource,
        layout: SourceLayout,
        frame: int,
        active_id: str,
        previous_id: Optional[str],
        progress: float,
    ) -> SourceFrameState:
        is_active = source.id == active_id
        is_previous = source.id == previous_id
        visible = layout.visible or is_previous

        opacity = 1.0
        if is_previous and not is_active:
            opacity = 1.0 - progress
        elif is_active and previous_id is not None:
            opacity = progress

        cell_w = self.canvas_width * layout.width / 100.0
        cell_h = self.canvas_height * layout.height / 100.0
        target_aspect = cell_w / cell_h if cell_h > 0 else 1.0
        source_w = source.width or self.canvas_width
        source_h = source.height or self.canvas_height

        absolute_s = self.settings.clip_start_s + frame / self.fps
        seek_frame = int(math.floor(video_seek_time(absolute_s, source.sync_offset_ms) * self.fps))

        return SourceFrameState(
            source_id=source.id,
            visible=visible,
            x=layout.x,
            y=layout.y,
            width=layout.width,
            height=layout.height,
            z_index=layout.z_index,
            opacity=opacity,
            crop_object_position=compute_crop_position(
                source_w, source_h, target_aspect, source.crop_offset_x, source.crop_offset_y
            ),
            seek_frame=seek_frame,
            crop=compute_crop_window(
                source_w, source_h, target_aspect, source.crop_offset_x, source.crop_offset_y
            ),
        )


# ---------------------------------------------------------------------------
# Switching timeline from speaker segments
# ---------------------------------------------------------------------------


def resolve_video_source_for_speaker(
    speaker_label: str,
    sources: Sequence[VideoSource],
    speaker_id: Optional[str] = None,
) -> Optional[str]:
    """Map a diarized speaker to the best matching camera.

    Match order: speaker id -> person id on a speaker camera, exact label
    on a speaker camera, case-insensitive label on a speaker camera, then
    case-insensitive label on any camera.
    """
    speakers = [s for s in sources if s.source_type == "speaker"]
    if speaker_id:
        for s in speakers:
            if s.person_id == speaker_id:
                return s.id
    for s in speakers:
        if s.label == speaker_label:
            return s.id
    lowered = speaker_label.lower()
    for s in speakers:
        if s.label.lower() == lowered:
            return s.id
    for s in sources:
        if s.label.lower() == lowered:
            return s.id
    return None


def _order_based_speaker_map(
    segments: Sequence[SpeakerSegment],
    sources: Sequence[VideoSource],
) -> Dict[str, str]:
    """First speaker heard -> first speaker camera by display order, and so on."""
    cameras = sorted(
        (s for s in sources if s.source_type == "speaker"),
        key=lambda s: s.display_order,
    )
    labels: List[str] = []
    for seg in segments:
        if seg.speaker_label not in labels:
            labels.append(seg.speaker_label)
    return {label: cam.id for label, cam in zip(labels, cameras)}


def resolve_active_source(
    time_s: float,
    segments: Sequence[SpeakerSegment],
    sources: Sequence[VideoSource],
    default_source_id: Optional[str] = None,
    hold_previous_ms: float = DEFAULT_HOLD_PREVIOUS_MS,
    overrides: Sequence[MulticamOverride] = (),
) -> str:
    """Camera to show at ``time_s`` given diarized speaker turns.

    RULES:
    - Manual overrides win unconditionally
    - A single source is always shown
    - During silence the previous speaker is held for hold_previous_ms,
      then the default (or first) source is shown
    """
    for override in overrides:
        if override.start_s <= time_s < override.end_s:
            return override.video_source_id

    if len(sources) == 1:
        return sources[0].id

    fallback = default_source_id or sources[0].id
    speakers = [s for s in sources if s.source_type == "speaker"]
    if not speakers:
        return fallback
    if not segments:
        return default_source_id or speakers[0].id

    order_map: Optional[Dict[str, str]] = None

    def source_for(seg: SpeakerSegment) -> Optional[str]:
        nonlocal order_map
        matched = resolve_video_source_for_speaker(seg.speaker_label, sources, seg.speaker_id)
        if matched:
            return matched
        if order_map is None:
            order_map = _order_based_speaker_map(segments, sources)
        return order_map.get(seg.speaker_label)

    previous: Optional[SpeakerSegment] = None
    for seg in segments:
        if seg.start_s <= time_s < seg.end_s:
            return source_for(seg) or fallback
        if seg.end_s <= time_s and (previous is None or seg.end_s >= previous.end_s):
            previous = seg

    if previous is not None and time_s - previous.end_s < hold_previous_ms / 1000.0:
        held = source_for(previous)
        if held:
            return held
    return fallback


def compute_switching_timeline(
    clip_start_s: float,
    clip_end_s: float,
    segments: Sequence[SpeakerSegment],
    sources: Sequence[VideoSource],
    default_source_id: Optional[str] = None,
    hold_previous_ms: float = DEFAULT_HOLD_PREVIOUS_MS,
    min_shot_duration_ms: float = DEFAULT_MIN_SHOT_DURATION_MS,
    overrides: Sequence[MulticamOverride] = (),
) -> List[TimeInterval]:
    """Collapse per-instant camera choices into contiguous time intervals.

    HOW: Samples resolve_active_source every 50 ms (sample times are
    computed from an integer step count, never accumulated), merges runs of
    the same camera, then absorbs shots shorter than min_shot_duration_ms
    into the preceding shot.
    """
    if not sources or clip_end_s <= clip_start_s:
        return []

    steps = int(math.ceil((clip_end_s - clip_start_s) / _TIMELINE_SAMPLE_STEP_S))
    raw: List[TimeInterval] = []
    current = ""
    interval_start = clip_start_s
    for i in range(steps):
        t = clip_start_s + i * _TIMELINE_SAMPLE_STEP_S
        source_id = resolve_active_source(
            t, segments, sources, default_source_id, hold_previous_ms, overrides
        )
        if source_id != current:
            if current:
                raw.append(TimeInterval(interval_start, t, current))
            current = source_id
            interval_start = t
    if current:
        raw.append(TimeInterval(interval_start, clip_end_s, current))

    if not raw:
        return [TimeInterval(clip_start_s, clip_end_s, sources[0].id)]

    min_shot_s = min_shot_duration_ms / 1000.0
    merged: List[TimeInterval] = [raw[0]]
    for interval in raw[1:]:
        prev = merged[-1]
        if interval.end_s - interval.start_s < min_shot_s or interval.video_source_id == prev.video_source_id:
            merged[-1] = TimeInterval(prev.start_s, interval.end_s, prev.video_source_id)
        else:
            merged.append(interval)
    return merged


def apply_pre_roll(timeline: Sequence[TimeInterval], pre_roll_s: float = 0.3) -> List[TimeInterval]:
    """Shift each switch earlier so the camera lands before the speaker talks.

    A switch never eats more than 30% of the previous shot and always
    leaves at least 100 ms of it.
    """
    if len(timeline) <= 1 or pre_roll_s <= 0:
        return list(timeline)

    result: List[TimeInterval] = []
    for i, interval in enumerate(timeline):
        start = interval.start_s
        if i > 0:
            prev = timeline[i - 1]
            max_shift = min(pre_roll_s, (prev.end_s - prev.start_s) * 0.3)
            start = max(prev.start_s + 0.1, start - max_shift)
            last = result[-1]
            result[-1] = TimeInterval(last.start_s, start, last.video_source_id)
        result.append(TimeInterval(start, interval.end_s, interval.video_source_id))
    return result


def to_frame_timeline(
    timeline: Sequence[TimeInterval],
    clip_start_s: float,
    duration_in_frames: int,
    fps: float,
) -> List[SwitchingInterval]:
    """Snap time intervals onto a frame timeline that tiles the clip.

    Every boundary is rounded once and shared by the two intervals it
    separates, so the result has no gap or overlap. The first interval
    starts at 0, the last ends at duration_in_frames, and intervals that
    round to zero frames are dropped.
    """
    if not timeline or duration_in_frames <= 0:
        return []

    result: List[SwitchingInterval] = []
    start = 0
    for i, interval in enumerate(timeline):
        if i == len(timeline) - 1:
            end = duration_in_frames
        else:
            end = round_half_up((interval.end_s - clip_start_s) * fps)
            end = max(0, min(duration_in_frames, end))
        if end <= start:
            continue
        if result and result[-1].video_source_id == interval.video_source_id:
            result[-1] = SwitchingInterval(result[-1].start_frame, end, interval.video_source_id)
        else:
            result.append(SwitchingInterval(start, end, interval.video_source_id))
        start = end

    if result and result[-1].end_frame != duration_in_frames:
        last = result[-1]
        result[-1] = SwitchingInterval(last.start_frame, duration_in_frames, last.video_source_id)
    return result


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else "{:g}".format(value)
