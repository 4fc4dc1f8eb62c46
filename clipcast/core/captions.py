"""Caption grouper: cues, active word and per-frame animation state.

WHY: Social captions show a few words at a time, grouped into "cues",
with the spoken word emphasized. The renderer draws whatever this module
says is visible at a frame, so the grouping and animation math must be a
pure function of the frame: the renderer may evaluate frames in any order,
in parallel, or more than once.

HOW: Word timings are partitioned into cues of ``words_per_group`` words
by position (never by timing gaps). For a queried frame the active word is
found by binary search, its cue becomes the visible cue, and the cue's
animation state (opacity, scale, reveal mask, per-word highlight) is
computed in closed form from the frame and the cue/word frame bounds.

RULES:
- Cue index = word_index // words_per_group; last cue gets the remainder
- Active word: the word whose [start_frame, end_frame] contains the frame;
  on a shared boundary frame the later word wins; in a gap the first
  not-yet-started word; past the last word, nothing
- A cue is visible only within CAPTION_MARGIN_FRAMES of its own span
- When the active word's cue is not yet visible, the cue of the word that
  just ended keeps drawing through its exit margin with no active word;
  after that nothing is rendered (no stale cue during silence)
- Animations: fade, pop (damped spring), typewriter (reveal mask),
  karaoke (cue fade + per-word highlight color and optional scale ramp)
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from clipcast.config import CAPTION_MARGIN_FRAMES, TYPEWRITER_FRAMES_PER_WORD
from clipcast.core.ir import (
    SUBTITLE_ANIMATIONS,
    CaptionStyle,
    Cue,
    SubtitleConfig,
    Track,
    WordTiming,
)
from clipcast.errors import ConfigurationError

# Spring used by the "pop" animation
_POP_MASS = 0.5
_POP_STIFFNESS = 200.0
_POP_DAMPING = 12.0

# CaptionStyle.animation -> SubtitleConfig.animation
_ANIMATION_MAP = {
    "karaoke": "karaoke",
    "word-by-word": "karaoke",
    "bounce": "pop",
    "typewriter": "typewriter",
}


# ---------------------------------------------------------------------------
# Frame state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WordFrameState:
    """How one word of the visible cue is drawn at a frame."""

    text: str
    highlighted: bool
    color: str
    scale: float


@dataclass(frozen=True)
class CaptionFrameState:
    """Everything the renderer needs to draw captions at one frame.

    RULES:
    - opacity and scale apply to the whole cue
    - reveal_inset_pct is the right-hand clip inset (0 = fully revealed)
    - words are in cue order, one entry per cue word
    - active_word_index is None while a cue eases out after its last word
    """

    frame: int
    cue: Cue
    active_word_index: Optional[int]
    opacity: float
    scale: float
    reveal_inset_pct: float
    words: tuple[WordFrameState, ...]

    @property
    def active_word(self) -> Optional[WordTiming]:
        if self.active_word_index is None:
            return None
        return self.cue.words[self.active_word_index - self.cue.first_word_index]


# ---------------------------------------------------------------------------
# Style resolution
# ---------------------------------------------------------------------------


def resolve_caption_style(
    clip_style: Optional[CaptionStyle],
    tracks: Sequence[Track] = (),
) -> CaptionStyle:
    """Pick the caption style for a clip.

    The clip's own style wins, then the first captions track's style,
    then the default style.
    """
    if clip_style is not None:
        return clip_style
    for track in tracks:
        if track.type == "captions" and track.caption_style is not None:
            return track.caption_style
    return CaptionStyle()


def to_subtitle_config(style: CaptionStyle) -> SubtitleConfig:
    """Convert a user-facing CaptionStyle to the renderer's SubtitleConfig.

    RULES:
    - word-by-word and karaoke render as karaoke, bounce as pop
    - Unknown animations fall back to karaoke
    - highlight color falls back to the primary color
    - words_per_group < 1 is a configuration error
    """
    if style.words_per_group < 1:
        raise ConfigurationError(
            "words_per_group must be >= 1, got {}".format(style.words_per_group)
        )
    animation = _ANIMATION_MAP.get(style.animation, "karaoke")
    return SubtitleConfig(
        animation=animation,
        words_per_group=style.words_per_group,
        font_family=style.font_family,
        font_size=style.font_size,
        font_weight=style.font_weight,
        color=style.primary_color,
        highlight_color=style.highlight_color or style.primary_color,
        highlight_scale=float(style.highlight_scale or 0.0),
        position=style.position,
        position_x=style.position_x,
        position_y=style.position_y,
        background_color=style.background_color,
    )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def build_cues(timings: Sequence[WordTiming], words_per_group: int) -> List[Cue]:
    """Partition word timings into fixed-size cues, in original order.

    Words are taken left-to-right in groups of ``words_per_group``; the
    final cue gets the remainder (1 to words_per_group words).
    """
    if words_per_group < 1:
        raise ConfigurationError(
            "words_per_group must be >= 1, got {}".format(words_per_group)
        )
    cues: List[Cue] = []
    for first in range(0, len(timings), words_per_group):
        chunk = tuple(timings[first:first + words_per_group])
        cues.append(Cue(
            index=first // words_per_group,
            first_word_index=first,
            words=chunk,
            start_frame=min(w.start_frame for w in chunk),
            end_frame=max(w.end_frame for w in chunk),
        ))
    return cues


def find_active_word(timings: Sequence[WordTiming], frame: int) -> Optional[int]:
    """Index of the word active at ``frame``, or None past the last word.

    HOW: Binary search for the last word starting at or before the frame.
    Because starts are non-decreasing, that is the later of two words
    sharing a boundary frame. If it has already ended, the frame sits in a
    gap and the next (not-yet-started) word is returned.
    """
    if not timings:
        return None
    starts = [w.start_frame for w in timings]
    idx = bisect.bisect_right(starts, frame) - 1
    if idx < 0:
        return 0
    if timings[idx].end_frame >= frame:
        return idx
    if idx + 1 < len(timings):
        return idx + 1
    return None


def visibility_window(cue: Cue) -> tuple[int, int]:
    """Inclusive frame range during which a cue may be drawn."""
    return cue.start_frame - CAPTION_MARGIN_FRAMES, cue.end_frame + CAPTION_MARGIN_FRAMES


# ---------------------------------------------------------------------------
# Grouper
# ---------------------------------------------------------------------------


class CaptionGrouper:
    """Frame-pure caption state for one clip.

    WHY: The renderer asks "what do the captions look like at frame f?"
    for every frame. Cue partitioning is done once up front; everything
    per-frame is computed from immutable inputs.

    HOW: Construct with the clip's word timings, its SubtitleConfig and
    the output fps, then call state_at(frame).

    RULES:
    - state_at() never mutates the grouper; repeated calls are identical
    - Returns None when nothing should be drawn
    """

    def __init__(
        self,
        timings: Sequence[WordTiming],
        config: SubtitleConfig,
        fps: float,
    ) -> None:
        self.timings = tuple(timings)
        self.config = config
        self.fps = fps
        self.cues = tuple(build_cues(self.timings, config.words_per_group))

    def cue_for_word(self, word_index: int) -> Cue:
        return self.cues[word_index // self.config.words_per_group]

    def _visible_cue(self, frame: int) -> tuple[Optional[Cue], Optional[int]]:
        """The cue drawn at ``frame`` and its active word index."""
        active = find_active_word(self.timings, frame)
        if active is not None:
            cue = self.cue_for_word(active)
            first_visible, last_visible = visibility_window(cue)
            if first_visible <= frame <= last_visible:
                return cue, active

        # exit margin of the word that just ended
        ended = bisect.bisect_right([w.start_frame for w in self.timings], frame) - 1
        if ended >= 0 and self.timings[ended].end_frame < frame:
            cue = self.cue_for_word(ended)
            if frame <= visibility_window(cue)[1]:
                return cue, None
        return None, None

    def state_at(self, frame: int) -> Optional[CaptionFrameState]:
        cue, active = self._visible_cue(frame)
        if cue is None:
            return None

        animation = self.config.animation
        if animation not in SUBTITLE_ANIMATIONS:
            animation = "karaoke"

        opacity = 1.0
        scale = 1.0
        reveal_inset = 0.0
        fade_out = _interpolate(frame, cue.end_frame, cue.end_frame + CAPTION_MARGIN_FRAMES, 1.0, 0.0)

        if animation in ("fade", "karaoke"):
            fade_in = _interpolate(frame, cue.start_frame - CAPTION_MARGIN_FRAMES, cue.start_frame, 0.0, 1.0)
            opacity = min(fade_in, fade_out)
        elif animation == "pop":
            scale = spring_value(
                frame - cue.start_frame + CAPTION_MARGIN_FRAMES,
                self.fps,
                mass=_POP_MASS,
                stiffness=_POP_STIFFNESS,
                damping=_POP_DAMPING,
            )
            opacity = fade_out
        elif animation == "typewriter":
            reveal_frames = TYPEWRITER_FRAMES_PER_WORD * len(cue.words)
            progress = _interpolate(frame, cue.start_frame, cue.start_frame + reveal_frames, 0.0, 1.0)
            reveal_inset = (1.0 - progress) * 100.0
            opacity = fade_out

        words = tuple(
            self._word_state(cue.first_word_index + offset, word, active, frame, animation)
            for offset, word in enumerate(cue.words)
        )

        return CaptionFrameState(
            frame=frame,
            cue=cue,
            active_word_index=active,
            opacity=opacity,
            scale=scale,
            reveal_inset_pct=reveal_inset,
            words=words,
        )

    def _word_state(
        self,
        index: int,
        word: WordTiming,
        active: Optional[int],
        frame: int,
        animation: str,
    ) -> WordFrameState:
        if animation != "karaoke":
            return WordFrameState(text=word.text, highlighted=False, color=self.config.color, scale=1.0)

        highlighted = index == active and word.start_frame <= frame <= word.end_frame
        if not highlighted:
            return WordFrameState(text=word.text, highlighted=False, color=self.config.color, scale=1.0)

        scale = 1.0
        if self.config.highlight_scale > 0:
            progress = _interpolate(frame, word.start_frame, word.end_frame, 0.0, 1.0)
            scale = 1.0 + progress * self.config.highlight_scale
        return WordFrameState(
            text=word.text,
            highlighted=True,
            color=self.config.highlight_color,
            scale=scale,
        )


# ---------------------------------------------------------------------------
# Easing helpers
# ---------------------------------------------------------------------------


def _interpolate(x: float, x0: float, x1: float, y0: float, y1: float) -> float:
    """Linear interpolation of x over [x0, x1] -> [y0, y1], clamped both sides."""
    if x1 == x0:
        return y1 if x >= x1 else y0
    t = (x - x0) / (x1 - x0)
    t = max(0.0, min(1.0, t))
    return y0 + (y1 - y0) * t


def spring_value(
    frame: float,
    fps: float,
    mass: float = 1.0,
    stiffness: float = 100.0,
    damping: float = 10.0,
) -> float:
    """Position of a damped spring released from 0 towards 1, at rest initially.

    Closed-form solution of ``m x'' + c x' + k (x - 1) = 0`` evaluated at
    ``t = frame / fps``. Frames before release return 0.
    """
    if frame <= 0 or fps <= 0:
        return 0.0
    t = frame / fps
    omega = math.sqrt(stiffness / mass)
    zeta = damping / (2.0 * math.sqrt(stiffness * mass))

    if zeta < 1.0:
        omega_d = omega * math.sqrt(1.0 - zeta * zeta)
        envelope = math.exp(-zeta * omega * t)
        return 1.0 - envelope * (
            math.cos(omega_d * t) + (zeta * omega / omega_d) * math.sin(omega_d * t)
        )
    if zeta == 1.0:
        return 1.0 - math.exp(-omega * t) * (1.0 + omega * t)

    root = math.sqrt(zeta * zeta - 1.0)
    r1 = -omega * (zeta - root)
    r2 = -omega * (zeta + root)
    # x(0) = 0 and x'(0) = 0
    c2 = r1 / (r2 - r1)
    c1 = -1.0 - c2
    return 1.0 + c1 * math.exp(r1 * t) + c2 * math.exp(r2 * t)
