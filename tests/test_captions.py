"""Tests for caption layer state."""

from __future__ import annotations

import pytest

from domain.reel_composition import CaptionStyle, Timeline, WordTiming
from service.captions import (
    DEFAULT_FOREGROUND_COLOR,
    SpringConfig,
    bounce_transform,
    caption_layer,
    spring_value,
)

ACCENT = "#ff3366"
FPS = 30


def build_timeline(words: list[str], word_length: float = 0.5) -> Timeline:
    """Build back-to-back word timings."""
    timings = tuple(
        WordTiming(word=word, start=index * word_length, end=(index + 1) * word_length)
        for index, word in enumerate(words)
    )
    duration = max(word_length * len(words), 1.0)
    return Timeline(words=timings, duration_seconds=duration)


def test_bounce_active_word_follows_time() -> None:
    """Highlight Hello at frame 0 and World at frame 20."""
    timeline = Timeline(
        words=(
            WordTiming(word="Hello", start=0.0, end=0.5),
            WordTiming(word="World", start=0.5, end=1.0),
        ),
        duration_seconds=2.0,
    )
    first = caption_layer(timeline, 0, FPS, CaptionStyle.TIKTOK_BOUNCE, ACCENT)
    assert first is not None
    assert first.active_index == 0
    assert [word.text for word in first.words] == ["HELLO", "WORLD"]
    assert first.words[0].is_active
    assert first.words[0].color == ACCENT
    assert first.words[1].color == DEFAULT_FOREGROUND_COLOR

    later = caption_layer(timeline, 20, FPS, CaptionStyle.TIKTOK_BOUNCE, ACCENT)
    assert later is not None
    assert later.active_index == 1
    assert later.words[1].is_active
    assert later.words[1].color == ACCENT
    assert later.words[0].color == DEFAULT_FOREGROUND_COLOR
    assert later.words[0].scale == 1.0
    assert later.words[0].offset_y == 0.0


def test_active_word_starts_small_and_low() -> None:
    """Start the spring at rest on the word's first frame."""
    timeline = build_timeline(["one", "two"])
    layer = caption_layer(timeline, 0, FPS, CaptionStyle.TIKTOK_BOUNCE, ACCENT)
    assert layer is not None
    assert layer.words[0].scale == pytest.approx(0.7)
    assert layer.words[0].offset_y == pytest.approx(30.0)


def test_spring_overshoots_then_settles() -> None:
    """Rise from 0, overshoot past 1, then settle on 1."""
    assert spring_value(0, FPS) == 0.0
    assert spring_value(-3, FPS) == 0.0
    samples = [spring_value(frame, FPS) for frame in range(0, 31)]
    assert max(samples) > 1.1
    assert spring_value(60, FPS) == pytest.approx(1.0, abs=1e-6)


def test_spring_damping_regimes_settle() -> None:
    """Settle on 1 for critically and over-damped springs too."""
    critical = SpringConfig(stiffness=100.0, damping=20.0, mass=1.0)
    over = SpringConfig(stiffness=100.0, damping=40.0, mass=1.0)
    for config in (critical, over):
        samples = [spring_value(frame, FPS, config) for frame in range(1, 120)]
        assert all(0.0 <= value <= 1.0 + 1e-9 for value in samples)
        assert samples[-1] == pytest.approx(1.0, abs=1e-3)


def test_bounce_transform_knots() -> None:
    """Map spring values to scale and vertical offset."""
    assert bounce_transform(0.0) == (pytest.approx(0.7), pytest.approx(30.0))
    assert bounce_transform(0.5) == (pytest.approx(0.85), pytest.approx(-15.0))
    assert bounce_transform(1.0) == (pytest.approx(1.0), pytest.approx(0.0))


def test_highlight_word_pages_and_chip() -> None:
    """Page three words at a time and chip the active word."""
    timeline = build_timeline(["a", "b", "c", "d", "e"])
    layer = caption_layer(timeline, 45, FPS, CaptionStyle.HIGHLIGHT_WORD, ACCENT)
    assert layer is not None
    assert layer.group_start == 3
    assert [word.text for word in layer.words] == ["d", "e"]
    assert layer.words[0].chip_color == ACCENT
    assert layer.words[1].chip_color is None
    assert all(word.color == DEFAULT_FOREGROUND_COLOR for word in layer.words)


def test_subtitle_classic_shows_six_word_line() -> None:
    """Join the current page of six words into one line."""
    words = ["one", "two", "three", "four", "five", "six", "seven"]
    timeline = build_timeline(words)
    layer = caption_layer(timeline, 0, FPS, CaptionStyle.SUBTITLE_CLASSIC, ACCENT)
    assert layer is not None
    assert layer.line_text == "one two three four five six"
    assert not any(word.is_active for word in layer.words)

    last_page = caption_layer(timeline, 100, FPS, CaptionStyle.SUBTITLE_CLASSIC, ACCENT)
    assert last_page is not None
    assert last_page.line_text == "seven"


def test_page_before_first_word_shows_first_group() -> None:
    """Show the first page with nothing active before speech starts."""
    timeline = Timeline(
        words=(WordTiming(word="late", start=1.0, end=1.5),),
        duration_seconds=2.0,
    )
    layer = caption_layer(timeline, 0, FPS, CaptionStyle.TIKTOK_BOUNCE, ACCENT)
    assert layer is not None
    assert layer.active_index == -1
    assert layer.words[0].color == DEFAULT_FOREGROUND_COLOR


def test_empty_timeline_has_no_caption() -> None:
    """Return no caption layer when there are no words."""
    timeline = Timeline(words=tuple(), duration_seconds=1.0)
    assert caption_layer(timeline, 0, FPS, CaptionStyle.HIGHLIGHT_WORD, ACCENT) is None
