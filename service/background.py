"""Procedural background motion for reel compositions."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Tuple

from domain.reel_composition import parse_hex_color
from service.timeline import frame_to_time, interpolate

ROTATION_TURNS_PER_SECOND = 0.3
SECONDARY_COLOR_SHIFT_PERCENT = 30


@dataclass(frozen=True)
class OrbMotion:
    """Static parameters for one floating orb."""

    period_frames: float
    phase: float
    range_low_ratio: float
    range_high_ratio: float
    size: int
    left_ratio: float
    anchor_right: bool
    color_source: str
    alpha: int
    blur: int


@dataclass(frozen=True)
class OrbState:
    """Position and look of one orb at a frame."""

    x: float
    y: float
    size: int
    color: str
    alpha: int
    blur: int


@dataclass(frozen=True)
class BackgroundLayer:
    """Background layer state for one frame."""

    rotation_degrees: float
    primary_color: str
    secondary_color: str
    orbs: Tuple[OrbState, ...]


ORB_MOTIONS = (
    OrbMotion(
        period_frames=30,
        phase=0.0,
        range_low_ratio=0.1,
        range_high_ratio=0.3,
        size=500,
        left_ratio=0.05,
        anchor_right=False,
        color_source="accent",
        alpha=0x30,
        blur=80,
    ),
    OrbMotion(
        period_frames=25,
        phase=1.0,
        range_low_ratio=0.4,
        range_high_ratio=0.6,
        size=400,
        left_ratio=0.1,
        anchor_right=True,
        color_source="secondary",
        alpha=0x40,
        blur=60,
    ),
    OrbMotion(
        period_frames=35,
        phase=2.0,
        range_low_ratio=0.6,
        range_high_ratio=0.8,
        size=350,
        left_ratio=0.35,
        anchor_right=False,
        color_source="accent",
        alpha=0x25,
        blur=50,
    ),
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def adjust_color(hex_color: str, percent: float) -> str:
    """Shift every channel of a #RRGGBB color by 2.55 * percent, clamped."""
    red, green, blue = parse_hex_color(hex_color)
    amount = round_half_up(2.55 * percent)
    channels = (
        min(255, max(0, channel + amount)) for channel in (red, green, blue)
    )
    return "#" + "".join(f"{channel:02x}" for channel in channels)


def resolve_secondary_color(primary_color: str, secondary_color: str | None) -> str:
    """Use the explicit secondary color or derive one from the primary."""
    if secondary_color:
        return secondary_color
    return adjust_color(primary_color, SECONDARY_COLOR_SHIFT_PERCENT)


def gradient_rotation(frame: int, fps: int) -> float:
    """Gradient angle in degrees, sweeping 0.3 turns per second."""
    progress = frame_to_time(frame, fps) * ROTATION_TURNS_PER_SECOND
    return (progress * 360) % 360


def orb_state(
    motion: OrbMotion,
    frame: int,
    width: int,
    height: int,
    accent_color: str,
    secondary_color: str,
) -> OrbState:
    """Compute where an orb sits at a frame."""
    y_value = interpolate(
        math.sin(frame / motion.period_frames + motion.phase),
        (-1.0, 1.0),
        (height * motion.range_low_ratio, height * motion.range_high_ratio),
    )
    if motion.anchor_right:
        x_value = width - width * motion.left_ratio - motion.size
    else:
        x_value = width * motion.left_ratio
    color = accent_color if motion.color_source == "accent" else secondary_color
    return OrbState(
        x=x_value,
        y=y_value,
        size=motion.size,
        color=color,
        alpha=motion.alpha,
        blur=motion.blur,
    )


def background_layer(
    frame: int,
    fps: int,
    width: int,
    height: int,
    primary_color: str,
    accent_color: str,
    secondary_color: str | None,
) -> BackgroundLayer:
    """Build the background layer for a frame."""
    resolved_secondary = resolve_secondary_color(primary_color, secondary_color)
    return BackgroundLayer(
        rotation_degrees=gradient_rotation(frame, fps),
        primary_color=primary_color,
        secondary_color=resolved_secondary,
        orbs=tuple(
            orb_state(motion, frame, width, height, accent_color, resolved_secondary)
            for motion in ORB_MOTIONS
        ),
    )
