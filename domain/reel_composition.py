"""Domain types and parsing for reel compositions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import re
from typing import Mapping, Tuple
from urllib.parse import urlparse

INVALID_COLOR_CODE = "reel_render.input.invalid_color"
INVALID_PROPS_CODE = "reel_render.input.invalid_props"
INVALID_TIMELINE_CODE = "reel_render.input.invalid_timeline"
INVALID_DURATION_CODE = "reel_render.input.invalid_duration"
INVALID_STYLE_CODE = "reel_render.input.invalid_caption_style"
INVALID_AUDIO_URL_CODE = "reel_render.input.invalid_audio_url"
MISSING_FIELDS_CODE = "reel_render.input.missing_fields"
UNKNOWN_COMPOSITION_CODE = "reel_render.input.unknown_composition"

HEX_COLOR_PATTERN = re.compile(r"#([0-9a-fA-F]{6})")
USER_ID_UNSAFE_PATTERN = re.compile(r"[^A-Za-z0-9_-]")
MAX_DURATION_SECONDS = 60.0
AUDIO_URL_SCHEMES = frozenset({"http", "https"})
MAX_USER_ID_LENGTH = 64
ANONYMOUS_USER_ID = "anon"
DEFAULT_COMPOSITION_ID = "SimpleReel"
MISSING_FIELDS_MESSAGE = "Missing composition or inputProps"


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class CaptionStyle(str, Enum):
    """Supported caption styles."""

    TIKTOK_BOUNCE = "tiktok_bounce"
    HIGHLIGHT_WORD = "highlight_word"
    SUBTITLE_CLASSIC = "subtitle_classic"

    @property
    def group_size(self) -> int:
        """Number of words shown per caption page."""
        return CAPTION_GROUP_SIZES[self]


CAPTION_GROUP_SIZES = {
    CaptionStyle.TIKTOK_BOUNCE: 3,
    CaptionStyle.HIGHLIGHT_WORD: 3,
    CaptionStyle.SUBTITLE_CLASSIC: 6,
}


@dataclass(frozen=True)
class WordTiming:
    """A narrated word bound to its time interval."""

    word: str
    start: float
    end: float

    def __post_init__(self) -> None:
        if not self.word.strip():
            raise RenderValidationError(
                INVALID_TIMELINE_CODE, "word must be non-empty"
            )
        if not math.isfinite(self.start) or not math.isfinite(self.end):
            raise RenderValidationError(
                INVALID_TIMELINE_CODE, "word times must be finite"
            )
        if self.start < 0:
            raise RenderValidationError(
                INVALID_TIMELINE_CODE, "word start must be non-negative"
            )
        if self.end <= self.start:
            raise RenderValidationError(
                INVALID_TIMELINE_CODE,
                f"word end must be after start: {self.word!r}",
            )


@dataclass(frozen=True)
class Timeline:
    """Ordered, non-overlapping word timings over a bounded duration."""

    words: Tuple[WordTiming, ...]
    duration_seconds: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.duration_seconds):
            raise RenderValidationError(
                INVALID_DURATION_CODE, "duration must be finite"
            )
        if self.duration_seconds <= 0 or self.duration_seconds > MAX_DURATION_SECONDS:
            raise RenderValidationError(
                INVALID_DURATION_CODE,
                f"duration must be within (0, {MAX_DURATION_SECONDS:g}] seconds",
            )
        for previous, current in zip(self.words, self.words[1:]):
            if current.start < previous.end:
                raise RenderValidationError(
                    INVALID_TIMELINE_CODE,
                    "word timestamps must be ordered and non-overlapping",
                )

    @property
    def starts(self) -> Tuple[float, ...]:
        return tuple(word.start for word in self.words)

    def __len__(self) -> int:
        return len(self.words)


@dataclass(frozen=True)
class CompositionProps:
    """Validated input properties for a reel composition."""

    audio_url: str | None
    timeline: Timeline
    caption_style: CaptionStyle
    primary_color: str
    accent_color: str
    secondary_color: str | None = None

    def __post_init__(self) -> None:
        for label, value in (
            ("primaryColor", self.primary_color),
            ("accentColor", self.accent_color),
        ):
            validate_hex_color(value, label)
        if self.secondary_color is not None:
            validate_hex_color(self.secondary_color, "secondaryColor")
        if self.audio_url is not None:
            validate_audio_url(self.audio_url)
        if not isinstance(self.caption_style, CaptionStyle):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "caption_style is invalid"
            )

    @property
    def duration_seconds(self) -> float:
        return self.timeline.duration_seconds


@dataclass(frozen=True)
class CompositionSpec:
    """Fixed canvas and timing for a registered composition."""

    composition_id: str
    fps: int = 30
    width: int = 1080
    height: int = 1920
    max_duration_seconds: float = MAX_DURATION_SECONDS

    def __post_init__(self) -> None:
        if not self.composition_id.strip():
            raise RenderValidationError(
                INVALID_PROPS_CODE, "composition_id must be non-empty"
            )
        if self.fps <= 0:
            raise RenderValidationError(INVALID_PROPS_CODE, "fps must be positive")
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_PROPS_CODE, "width and height must be positive"
            )
        if self.width % 2 or self.height % 2:
            raise RenderValidationError(
                INVALID_PROPS_CODE, "width and height must be even for yuv420p"
            )

    def total_frames(self, duration_seconds: float) -> int:
        """Frame count covering the capped duration."""
        capped = min(duration_seconds, self.max_duration_seconds)
        return max(1, int(math.ceil(capped * self.fps)))


@dataclass(frozen=True)
class RenderRequest:
    """Parsed render submission."""

    composition_id: str
    props: CompositionProps
    user_id: str


def validate_hex_color(value: object, label: str) -> str:
    """Validate a #RRGGBB color string."""
    if not isinstance(value, str) or not HEX_COLOR_PATTERN.fullmatch(value.strip()):
        raise RenderValidationError(
            INVALID_COLOR_CODE, f"{label} must be a #RRGGBB color: {value!r}"
        )
    return value.strip()


def validate_audio_url(value: str) -> str:
    """Accept only remote http(s) audio sources."""
    parsed = urlparse(value)
    if parsed.scheme.lower() not in AUDIO_URL_SCHEMES or not parsed.netloc:
        raise RenderValidationError(
            INVALID_AUDIO_URL_CODE, f"audioUrl must be an http(s) URL: {value!r}"
        )
    return value


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """Parse a #RRGGBB color into an RGB tuple."""
    match_value = HEX_COLOR_PATTERN.fullmatch(value.strip())
    if not match_value:
        raise RenderValidationError(
            INVALID_COLOR_CODE, f"invalid color value: {value!r}"
        )
    rgb_hex = match_value.group(1)
    return (int(rgb_hex[0:2], 16), int(rgb_hex[2:4], 16), int(rgb_hex[4:6], 16))


def parse_caption_style(value: object) -> CaptionStyle:
    """Parse a caption style name."""
    if not isinstance(value, str):
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"invalid caption style: {value!r}"
        )
    try:
        return CaptionStyle(value.strip().lower())
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"invalid caption style: {value!r}"
        ) from exc


def parse_number(value: object, label: str, code: str) -> float:
    """Parse a JSON number, rejecting booleans."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RenderValidationError(code, f"{label} must be a number")
    try:
        number = float(value)
    except OverflowError as exc:
        raise RenderValidationError(code, f"{label} must be a finite number") from exc
    if not math.isfinite(number):
        raise RenderValidationError(code, f"{label} must be a finite number")
    return number


def parse_word_timing(raw_value: object, index: int) -> WordTiming:
    """Parse a single {word, start, end} entry."""
    if not isinstance(raw_value, Mapping):
        raise RenderValidationError(
            INVALID_TIMELINE_CODE, f"wordTimestamps[{index}] must be an object"
        )
    word = raw_value.get("word")
    if not isinstance(word, str):
        raise RenderValidationError(
            INVALID_TIMELINE_CODE, f"wordTimestamps[{index}].word must be a string"
        )
    start = parse_number(
        raw_value.get("start"), f"wordTimestamps[{index}].start", INVALID_TIMELINE_CODE
    )
    end = parse_number(
        raw_value.get("end"), f"wordTimestamps[{index}].end", INVALID_TIMELINE_CODE
    )
    return WordTiming(word=word, start=start, end=end)


def parse_composition_props(raw_props: object) -> CompositionProps:
    """Parse the camelCase inputProps payload."""
    if not isinstance(raw_props, Mapping):
        raise RenderValidationError(
            INVALID_PROPS_CODE, "inputProps must be an object"
        )
    duration = parse_number(
        raw_props.get("duration"), "duration", INVALID_DURATION_CODE
    )
    raw_words = raw_props.get("wordTimestamps", [])
    if raw_words is None:
        raw_words = []
    if not isinstance(raw_words, list):
        raise RenderValidationError(
            INVALID_TIMELINE_CODE, "wordTimestamps must be a list"
        )
    words = tuple(
        parse_word_timing(raw_word, index) for index, raw_word in enumerate(raw_words)
    )
    timeline = Timeline(words=words, duration_seconds=duration)

    audio_url = raw_props.get("audioUrl")
    if audio_url is not None and not isinstance(audio_url, str):
        raise RenderValidationError(
            INVALID_PROPS_CODE, "audioUrl must be a string"
        )
    if audio_url is not None:
        audio_url = audio_url.strip() or None
    secondary_color = raw_props.get("secondaryColor")
    if secondary_color == "":
        secondary_color = None

    return CompositionProps(
        audio_url=audio_url,
        timeline=timeline,
        caption_style=parse_caption_style(raw_props.get("captionStyle")),
        primary_color=validate_hex_color(raw_props.get("primaryColor"), "primaryColor"),
        accent_color=validate_hex_color(raw_props.get("accentColor"), "accentColor"),
        secondary_color=(
            validate_hex_color(secondary_color, "secondaryColor")
            if secondary_color is not None
            else None
        ),
    )


def sanitize_user_id(value: str) -> str:
    """Reduce a user id to a filename-safe token."""
    cleaned = USER_ID_UNSAFE_PATTERN.sub("_", value.strip())[:MAX_USER_ID_LENGTH]
    return cleaned or ANONYMOUS_USER_ID


def parse_render_request(payload: object) -> RenderRequest:
    """Parse a POST /render body."""
    if not isinstance(payload, Mapping):
        raise RenderValidationError(MISSING_FIELDS_CODE, MISSING_FIELDS_MESSAGE)
    composition_id = payload.get("composition")
    raw_props = payload.get("inputProps")
    if not composition_id or not raw_props:
        raise RenderValidationError(MISSING_FIELDS_CODE, MISSING_FIELDS_MESSAGE)
    if not isinstance(composition_id, str) or not composition_id.strip():
        raise RenderValidationError(
            INVALID_PROPS_CODE, "composition must be a non-empty string"
        )
    raw_user_id = payload.get("userId")
    if raw_user_id is None or raw_user_id == "":
        user_id = ANONYMOUS_USER_ID
    elif isinstance(raw_user_id, str):
        user_id = sanitize_user_id(raw_user_id)
    else:
        raise RenderValidationError(INVALID_PROPS_CODE, "userId must be a string")
    return RenderRequest(
        composition_id=composition_id.strip(),
        props=parse_composition_props(raw_props),
        user_id=user_id,
    )
