"""Frame and time math over word timelines."""

from __future__ import annotations

from bisect import bisect_right
import math
from typing import Sequence

from domain.reel_composition import (
    INVALID_PROPS_CODE,
    RenderValidationError,
    Timeline,
)

NO_WORD_INDEX = -1
EXTRAPOLATE_EXTEND = "extend"
EXTRAPOLATE_CLAMP = "clamp"


def frame_to_time(frame: int, fps: int) -> float:
    """Convert a frame index into seconds."""
    return frame / fps


def time_to_frame(seconds: float, fps: int) -> int:
    """Frame on which an event at `seconds` first appears."""
    return int(math.floor(seconds * fps))


def compute_total_frames(duration_seconds: float, fps: int) -> int:
    """Compute total frames for a video duration."""
    total_frames = int(math.ceil(duration_seconds * fps))
    if total_frames <= 0:
        raise RenderValidationError(
            INVALID_PROPS_CODE, "duration and fps produce zero frames"
        )
    return total_frames


def interpolate(
    value: float,
    input_range: Sequence[float],
    output_range: Sequence[float],
    extrapolate_left: str = EXTRAPOLATE_EXTEND,
    extrapolate_right: str = EXTRAPOLATE_EXTEND,
) -> float:
    """Piecewise-linear map between matching knot sequences."""
    if len(input_range) != len(output_range) or len(input_range) < 2:
        raise ValueError("input and output ranges must match and have two knots")
    for left, right in zip(input_range, input_range[1:]):
        if right <= left:
            raise ValueError("input range must be strictly increasing")

    if value < input_range[0] and extrapolate_left == EXTRAPOLATE_CLAMP:
        return float(output_range[0])
    if value > input_range[-1] and extrapolate_right == EXTRAPOLATE_CLAMP:
        return float(output_range[-1])

    segment = len(input_range) - 2
    for index in range(1, len(input_range) - 1):
        if value < input_range[index]:
            segment = index - 1
            break
    in_low, in_high = input_range[segment], input_range[segment + 1]
    out_low, out_high = output_range[segment], output_range[segment + 1]
    ratio = (value - in_low) / (in_high - in_low)
    return out_low + ratio * (out_high - out_low)


def fade_window(frame: int, total_frames: int, fps: int) -> float:
    """Global opacity: linear fade in and out over half a second each."""
    half_second = fps / 2
    fade_in = interpolate(
        frame,
        (0, half_second),
        (0.0, 1.0),
        extrapolate_left=EXTRAPOLATE_CLAMP,
        extrapolate_right=EXTRAPOLATE_CLAMP,
    )
    fade_out = interpolate(
        frame,
        (total_frames - half_second, total_frames),
        (1.0, 0.0),
        extrapolate_left=EXTRAPOLATE_CLAMP,
        extrapolate_right=EXTRAPOLATE_CLAMP,
    )
    return fade_in * fade_out


def current_word_index(time_seconds: float, timeline: Timeline) -> int:
    """Index of the most recently started word, or NO_WORD_INDEX."""
    return bisect_right(timeline.starts, time_seconds) - 1


def group_start(index: int, group_size: int) -> int:
    """First word index of the caption page containing `index`."""
    if group_size <= 0:
        raise ValueError("group_size must be positive")
    return max(0, (index // group_size) * group_size)
