"""Per-frame composite state for reel compositions."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
import json
from typing import Iterator

from domain.reel_composition import CompositionProps, CompositionSpec
from service.background import BackgroundLayer, background_layer
from service.captions import CaptionLayer, caption_layer
from service.timeline import fade_window, frame_to_time


@dataclass(frozen=True)
class AudioLayer:
    """Audio track attached to the composition."""

    source: str


@dataclass(frozen=True)
class FrameState:
    """Composite state of one frame: background, captions, audio, opacity."""

    frame: int
    time_seconds: float
    opacity: float
    background: BackgroundLayer
    caption: CaptionLayer | None
    audio: AudioLayer | None

    def to_payload(self) -> dict[str, object]:
        """Build a JSON-ready payload."""
        return _plain(dataclasses.asdict(self))


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def compose_frame(
    frame: int, props: CompositionProps, composition: CompositionSpec
) -> FrameState:
    """Compute the composite state of a frame."""
    fps = composition.fps
    total_frames = composition.total_frames(props.duration_seconds)
    caption = None
    if props.timeline.words:
        caption = caption_layer(
            props.timeline, frame, fps, props.caption_style, props.accent_color
        )
    return FrameState(
        frame=frame,
        time_seconds=frame_to_time(frame, fps),
        opacity=fade_window(frame, total_frames, fps),
        background=background_layer(
            frame,
            fps,
            composition.width,
            composition.height,
            props.primary_color,
            props.accent_color,
            props.secondary_color,
        ),
        caption=caption,
        audio=AudioLayer(source=props.audio_url) if props.audio_url else None,
    )


def iter_frame_states(
    props: CompositionProps, composition: CompositionSpec
) -> Iterator[FrameState]:
    """Yield composite states for every frame in [0, total_frames)."""
    for frame in range(composition.total_frames(props.duration_seconds)):
        yield compose_frame(frame, props, composition)


def serialize_frame_state(state: FrameState) -> bytes:
    """Canonical JSON bytes for a frame state."""
    return json.dumps(
        state.to_payload(), sort_keys=True, separators=(",", ":")
    ).encode("utf-8")
