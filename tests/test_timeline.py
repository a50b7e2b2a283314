"""Tests for frame and time math."""

from __future__ import annotations

import pytest

from domain.reel_composition import Timeline, WordTiming
from service.timeline import (
    NO_WORD_INDEX,
    compute_total_frames,
    current_word_index,
    fade_window,
    frame_to_time,
    group_start,
    interpolate,
    time_to_frame,
)


def build_timeline(starts: list[float], word_length: float, duration: float) -> Timeline:
    """Build a timeline of evenly sized words."""
    words = tuple(
        WordTiming(word=f"w{index}", start=start, end=start + word_length)
        for index, start in enumerate(starts)
    )
    return Timeline(words=words, duration_seconds=duration)


def test_frame_time_conversions() -> None:
    """Convert between frames and seconds."""
    assert frame_to_time(0, 30) == 0.0
    assert frame_to_time(20, 30) == pytest.approx(0.6667, abs=1e-4)
    assert time_to_frame(0.5, 30) == 15
    assert time_to_frame(0.49, 30) == 14


def test_total_frames_rounds_up() -> None:
    """Cover the whole duration with frames."""
    assert compute_total_frames(2.0, 30) == 60
    assert compute_total_frames(1.01, 30) == 31


def test_interpolate_extends_and_clamps() -> None:
    """Extend past the knots by default and clamp on request."""
    assert interpolate(0.5, (0.0, 1.0), (0.7, 1.0)) == pytest.approx(0.85)
    assert interpolate(1.2, (0.0, 0.5, 1.0), (30.0, -15.0, 0.0)) == pytest.approx(6.0)
    assert interpolate(0.25, (0.0, 0.5, 1.0), (30.0, -15.0, 0.0)) == pytest.approx(7.5)
    assert interpolate(-1.0, (0.0, 1.0), (0.0, 1.0), "clamp", "clamp") == 0.0
    assert interpolate(3.0, (0.0, 1.0), (0.0, 1.0), "clamp", "clamp") == 1.0
    with pytest.raises(ValueError):
        interpolate(0.5, (1.0, 0.0), (0.0, 1.0))


def test_fade_window_endpoints_and_plateau() -> None:
    """Fade from and to black, fully opaque in between."""
    assert fade_window(0, 60, 30) == 0.0
    assert fade_window(60, 60, 30) == 0.0
    assert fade_window(15, 60, 30) == 1.0
    assert fade_window(30, 60, 30) == 1.0
    assert fade_window(45, 60, 30) == 1.0


def test_fade_window_is_symmetric() -> None:
    """Mirror the fade-in at the end of the composition."""
    for frame in range(0, 16):
        assert fade_window(frame, 60, 30) == pytest.approx(
            fade_window(60 - frame, 60, 30)
        )


def test_current_word_index_follows_starts() -> None:
    """Pick the most recently started word."""
    timeline = build_timeline([0.0, 0.5], 0.5, 2.0)
    assert current_word_index(frame_to_time(0, 30), timeline) == 0
    assert current_word_index(frame_to_time(20, 30), timeline) == 1
    assert current_word_index(1.9, timeline) == 1


def test_current_word_index_before_first_word() -> None:
    """Report no word before the first start."""
    timeline = build_timeline([0.2, 0.8], 0.3, 2.0)
    assert current_word_index(0.1, timeline) == NO_WORD_INDEX


def test_current_word_index_is_monotonic() -> None:
    """Never move backwards as frames advance."""
    timeline = build_timeline([0.1 * index for index in range(12)], 0.1, 2.0)
    previous = NO_WORD_INDEX
    for frame in range(60):
        index = current_word_index(frame_to_time(frame, 30), timeline)
        assert index >= previous
        previous = index


def test_group_start() -> None:
    """Page words into fixed-size groups."""
    assert group_start(NO_WORD_INDEX, 3) == 0
    assert group_start(0, 3) == 0
    assert group_start(4, 3) == 3
    assert group_start(5, 6) == 0
    assert group_start(6, 6) == 6
    with pytest.raises(ValueError):
        group_start(1, 0)
