"""Timing normalizer: word timestamps in seconds to output frame indices.

WHY: Captions and camera switches are evaluated per output frame. Word
timings arrive as float seconds relative to the source recording, so they
must be shifted to the clip start and snapped to the frame grid once,
reproducibly, before any per-frame evaluation happens.

HOW: Each word is converted independently (no running accumulator), so
frame bounds depend only on that word, the clip window and the fps.
Rounding is half-up rather than Python's banker's rounding, so a word at
exactly half a frame always lands on the later frame.

RULES:
- start_frame = round((start - clip_start) * fps), same for end_frame
- Both clamped to [0, round((clip_end - clip_start) * fps)]
- Words entirely outside [clip_start, clip_end] are dropped
- Output preserves input order and has start_frame <= end_frame
"""

from __future__ import annotations

import math
from typing import Iterable, List

from clipcast.core.ir import Word, WordTiming


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def seconds_to_frame(seconds: float, fps: float) -> int:
    """Convert clip-relative seconds to a frame index."""
    return round_half_up(seconds * fps)


def duration_in_frames(clip_start_s: float, clip_end_s: float, fps: float) -> int:
    """Length of the clip window on the frame grid (never negative)."""
    return max(0, seconds_to_frame(clip_end_s - clip_start_s, fps))


def to_frames(
    words: Iterable[Word],
    clip_start_s: float,
    clip_end_s: float,
    fps: float,
) -> List[WordTiming]:
    """Map words onto the frame grid of the clip window.

    Args:
        words: Ordered, non-overlapping words in source seconds.
        clip_start_s: Clip window start in source seconds.
        clip_end_s: Clip window end in source seconds.
        fps: Output frame rate.

    Returns:
        WordTiming list in input order, with words outside the window
        dropped and frame bounds clamped to the clip.
    """
    if fps <= 0:
        return []

    last_frame = duration_in_frames(clip_start_s, clip_end_s, fps)
    clip_length_s = max(0.0, clip_end_s - clip_start_s)
    timings: List[WordTiming] = []

    for word in words:
        if word.end_s < clip_start_s or word.start_s > clip_end_s:
            continue

        start_frame = _clamp(seconds_to_frame(word.start_s - clip_start_s, fps), 0, last_frame)
        end_frame = _clamp(seconds_to_frame(word.end_s - clip_start_s, fps), 0, last_frame)
        if end_frame < start_frame:
            end_frame = start_frame

        start_s = min(max(0.0, word.start_s - clip_start_s), clip_length_s)
        end_s = min(max(start_s, word.end_s - clip_start_s), clip_length_s)

        timings.append(WordTiming(
            text=word.text,
            start_frame=start_frame,
            end_frame=end_frame,
            start_s=start_s,
            end_s=end_s,
            confidence=word.confidence,
        ))

    return timings


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))
