"""Caption layer state for each caption style."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Tuple

from domain.reel_composition import CaptionStyle, Timeline
from service.timeline import (
    current_word_index,
    frame_to_time,
    group_start,
    interpolate,
    time_to_frame,
)

DEFAULT_FOREGROUND_COLOR = "#ffffff"
SPRING_STIFFNESS = 200.0
SPRING_DAMPING = 10.0
SPRING_MASS = 0.5
BOUNCE_SCALE_RANGE = (0.7, 1.0)
BOUNCE_OFFSET_KNOTS = (0.0, 0.5, 1.0)
BOUNCE_OFFSET_PIXELS = (30.0, -15.0, 0.0)
REST_SCALE = 1.0
REST_OFFSET = 0.0


@dataclass(frozen=True)
class SpringConfig:
    """Damped harmonic oscillator parameters."""

    stiffness: float = SPRING_STIFFNESS
    damping: float = SPRING_DAMPING
    mass: float = SPRING_MASS

    def __post_init__(self) -> None:
        if self.stiffness <= 0 or self.mass <= 0 or self.damping < 0:
            raise ValueError("spring stiffness and mass must be positive")


@dataclass(frozen=True)
class CaptionWord:
    """One visible caption word at a frame."""

    text: str
    index: int
    is_active: bool
    color: str
    chip_color: str | None
    scale: float
    offset_y: float


@dataclass(frozen=True)
class CaptionLayer:
    """Caption page state for one frame."""

    style: CaptionStyle
    group_start: int
    active_index: int
    words: Tuple[CaptionWord, ...]
    line_text: str | None


def spring_value(
    elapsed_frames: float, fps: int, config: SpringConfig = SpringConfig()
) -> float:
    """Unit step response of a damped spring, 0 at rest and settling at 1.

    Under-damped springs overshoot past 1 before settling. Negative elapsed
    frames return 0.
    """
    if elapsed_frames <= 0:
        return 0.0
    seconds = elapsed_frames / fps
    natural = math.sqrt(config.stiffness / config.mass)
    ratio = config.damping / (2 * math.sqrt(config.stiffness * config.mass))
    decay = math.exp(-ratio * natural * seconds)
    if ratio < 1:
        damped = natural * math.sqrt(1 - ratio * ratio)
        return 1 - decay * (
            math.cos(damped * seconds)
            + (ratio * natural / damped) * math.sin(damped * seconds)
        )
    if ratio == 1:
        return 1 - decay * (1 + natural * seconds)
    # over-damped
    root = natural * math.sqrt(ratio * ratio - 1)
    fast = -ratio * natural - root
    slow = -ratio * natural + root
    return 1 + (fast * math.exp(slow * seconds) - slow * math.exp(fast * seconds)) / (
        slow - fast
    )


def bounce_transform(spring: float) -> Tuple[float, float]:
    """Map a spring value to (scale, offset_y)."""
    scale = interpolate(spring, (0.0, 1.0), BOUNCE_SCALE_RANGE)
    offset_y = interpolate(spring, BOUNCE_OFFSET_KNOTS, BOUNCE_OFFSET_PIXELS)
    return scale, offset_y


def visible_page(timeline: Timeline, active_index: int, group_size: int) -> Tuple[int, int]:
    """Return the [start, end) word range of the caption page."""
    first = group_start(active_index, group_size)
    return first, min(len(timeline.words), first + group_size)


def caption_layer(
    timeline: Timeline,
    frame: int,
    fps: int,
    style: CaptionStyle,
    accent_color: str,
) -> CaptionLayer | None:
    """Build the caption layer for a frame, or None when nothing is visible."""
    current_time = frame_to_time(frame, fps)
    active_index = current_word_index(current_time, timeline)
    first, last = visible_page(timeline, active_index, style.group_size)
    if first >= last:
        return None

    words: list[CaptionWord] = []
    for index in range(first, last):
        timing = timeline.words[index]
        is_active = index == active_index
        if style == CaptionStyle.TIKTOK_BOUNCE:
            spring = (
                spring_value(frame - time_to_frame(timing.start, fps), fps)
                if is_active
                else 1.0
            )
            scale, offset_y = bounce_transform(spring)
            words.append(
                CaptionWord(
                    text=timing.word.upper(),
                    index=index,
                    is_active=is_active,
                    color=accent_color if is_active else DEFAULT_FOREGROUND_COLOR,
                    chip_color=None,
                    scale=scale,
                    offset_y=offset_y,
                )
            )
        elif style == CaptionStyle.HIGHLIGHT_WORD:
            words.append(
                CaptionWord(
                    text=timing.word,
                    index=index,
                    is_active=is_active,
                    color=DEFAULT_FOREGROUND_COLOR,
                    chip_color=accent_color if is_active else None,
                    scale=REST_SCALE,
                    offset_y=REST_OFFSET,
                )
            )
        else:
            words.append(
                CaptionWord(
                    text=timing.word,
                    index=index,
                    is_active=False,
                    color=DEFAULT_FOREGROUND_COLOR,
                    chip_color=None,
                    scale=REST_SCALE,
                    offset_y=REST_OFFSET,
                )
            )

    line_text = None
    if style == CaptionStyle.SUBTITLE_CLASSIC:
        line_text = " ".join(word.text for word in words)

    return CaptionLayer(
        style=style,
        group_start=first,
        active_index=active_index,
        words=tuple(words),
        line_text=line_text,
    )
