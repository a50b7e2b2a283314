#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26"
# ]
# ///
"""Render a narrated vertical reel with animated background and captions into an MP4."""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import shutil
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageFont

from domain.reel_composition import (
    DEFAULT_COMPOSITION_ID,
    INVALID_PROPS_CODE,
    UNKNOWN_COMPOSITION_CODE,
    CaptionStyle,
    CompositionProps,
    CompositionSpec,
    RenderValidationError,
    parse_composition_props,
    parse_hex_color,
)
from service.background import BackgroundLayer, OrbState
from service.bundle_cache import BundleArtifact
from service.captions import CaptionLayer
from service.compositor import (
    FrameState,
    compose_frame,
    iter_frame_states,
    serialize_frame_state,
)

LOGGER = logging.getLogger("render_reel_video")

FFMPEG_NOT_FOUND_CODE = "render_reel_video.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_reel_video.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_reel_video.ffmpeg.unsupported"
FFMPEG_PROCESS_CODE = "render_reel_video.ffmpeg.process_failed"
FONT_DIR_CODE = "render_reel_video.input.fonts_missing"
FONT_LOAD_CODE = "render_reel_video.input.fonts_unloadable"
INPUT_FILE_CODE = "render_reel_video.input.file_error"
OUTPUT_FILE_CODE = "render_reel_video.output.write_failed"

FFMPEG_LOG_LEVEL = "error"

H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_CRF = "20"
H264_PRESET = "veryfast"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
AUDIO_PAD_FILTER = "apad"

GRADIENT_DOWNSCALE = 4
ORB_FADE_RATIO = 0.7
CAPTION_BOTTOM_RATIO = 0.2
SHADOW_COLOR = (0, 0, 0, 150)
SHADOW_OFFSET = 4
SHADOW_BLUR = 10
PANEL_RGBA = (0, 0, 0, 217)
PROGRESS_STEP = 0.1


@dataclass(frozen=True)
class CaptionLook:
    """Typography and spacing for a caption style."""

    font_size: int
    word_gap: int
    panel_padding: Tuple[int, int] | None
    panel_radius: int
    chip_padding: Tuple[int, int]
    chip_rest_padding: Tuple[int, int]
    chip_radius: int
    shadow: bool


CAPTION_LOOKS = {
    CaptionStyle.TIKTOK_BOUNCE: CaptionLook(
        font_size=72,
        word_gap=16,
        panel_padding=None,
        panel_radius=0,
        chip_padding=(0, 0),
        chip_rest_padding=(0, 0),
        chip_radius=0,
        shadow=True,
    ),
    CaptionStyle.HIGHLIGHT_WORD: CaptionLook(
        font_size=52,
        word_gap=14,
        panel_padding=(36, 20),
        panel_radius=16,
        chip_padding=(16, 6),
        chip_rest_padding=(4, 6),
        chip_radius=10,
        shadow=False,
    ),
    CaptionStyle.SUBTITLE_CLASSIC: CaptionLook(
        font_size=44,
        word_gap=0,
        panel_padding=(32, 16),
        panel_radius=12,
        chip_padding=(0, 0),
        chip_rest_padding=(0, 0),
        chip_radius=0,
        shadow=False,
    ),
}


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class TextSprite:
    """Pre-rendered text with its ink size and sprite padding."""

    image: Image.Image
    padding: int
    text_width: int
    text_height: int


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def ensure_ffmpeg_available(ffmpeg_path: str = "ffmpeg") -> str:
    """Ensure ffmpeg is installed and executable."""
    resolved_path = shutil.which(ffmpeg_path)
    if not resolved_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, f"{ffmpeg_path} not on PATH")
    try:
        subprocess.run(
            [resolved_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc
    return resolved_path


def validate_ffmpeg_capabilities(ffmpeg_path: str) -> None:
    """Validate that ffmpeg ships the H.264 and AAC encoders."""
    try:
        encoders_result = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-encoders"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise RenderPipelineError(
            FFMPEG_NOT_FOUND_CODE, "ffmpeg is not available"
        ) from exc
    for encoder_name in (H264_CODEC, AUDIO_CODEC):
        if encoder_name not in encoders_result.stdout:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {encoder_name} encoder",
            )


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise RenderValidationError(
            FONT_DIR_CODE, f"fonts directory does not exist: {fonts_dir}"
        )

    font_files: list[str] = []
    for entry_name in sorted(os.listdir(fonts_dir)):
        lower_name = entry_name.lower()
        if lower_name.endswith(".ttf") or lower_name.endswith(".otf"):
            font_files.append(os.path.join(fonts_dir, entry_name))

    if not font_files:
        raise RenderValidationError(
            FONT_DIR_CODE,
            f"no font files found in {fonts_dir}",
        )
    return font_files


def select_caption_font(fonts_dir: str, sample_size: int) -> str:
    """Pick the first font in the directory that loads at the sample size."""
    for font_file_path in list_font_files(fonts_dir):
        try:
            ImageFont.truetype(font_file_path, size=sample_size)
        except OSError as exc:
            LOGGER.warning(
                "%s: skipped font %s (%s)",
                FONT_LOAD_CODE,
                font_file_path,
                str(exc).strip(),
            )
            continue
        return font_file_path
    raise RenderValidationError(
        FONT_LOAD_CODE, "failed to load any fonts from fonts directory"
    )


def load_caption_font(
    font_path: str | None, size: int
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load the caption font, falling back to Pillow's bundled font."""
    if font_path is None:
        return ImageFont.load_default(size=size)
    return ImageFont.truetype(font_path, size=size)


def build_composition_registry() -> dict[str, CompositionSpec]:
    """Compositions this renderer knows how to draw."""
    return {DEFAULT_COMPOSITION_ID: CompositionSpec(DEFAULT_COMPOSITION_ID)}


def build_bundle(
    fonts_dir: str | None,
    ffmpeg_path: str,
    clock=time.time,
) -> BundleArtifact:
    """Resolve encoder, fonts and compositions into a shareable bundle."""
    resolved_ffmpeg = ensure_ffmpeg_available(ffmpeg_path)
    validate_ffmpeg_capabilities(resolved_ffmpeg)
    sample_size = min(look.font_size for look in CAPTION_LOOKS.values())
    font_path = None
    if fonts_dir:
        font_path = select_caption_font(fonts_dir, sample_size)
    load_caption_font(font_path, sample_size)
    return BundleArtifact(
        compositions=build_composition_registry(),
        font_path=font_path,
        ffmpeg_path=resolved_ffmpeg,
        built_at=clock(),
    )


def build_gradient_grid(
    width: int, height: int, downscale: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Centered pixel coordinates sampled on a reduced grid."""
    small_width = max(1, width // downscale)
    small_height = max(1, height // downscale)
    xs = (np.arange(small_width, dtype=np.float32) + 0.5) * (width / small_width)
    ys = (np.arange(small_height, dtype=np.float32) + 0.5) * (height / small_height)
    grid_x, grid_y = np.meshgrid(xs - width / 2.0, ys - height / 2.0)
    return grid_x, grid_y


def render_gradient(
    grid: Tuple[np.ndarray, np.ndarray],
    width: int,
    height: int,
    rotation_degrees: float,
    primary_rgb: Tuple[int, int, int],
    secondary_rgb: Tuple[int, int, int],
) -> Image.Image:
    """Angled primary, secondary, primary gradient using the CSS angle convention."""
    grid_x, grid_y = grid
    radians = math.radians(rotation_degrees)
    sin_value = math.sin(radians)
    cos_value = math.cos(radians)
    line_length = abs(width * sin_value) + abs(height * cos_value)
    position = (grid_x * sin_value - grid_y * cos_value) / line_length + 0.5
    mix = np.clip(1.0 - np.abs(2.0 * position - 1.0), 0.0, 1.0)[..., np.newaxis]
    primary = np.array(primary_rgb, dtype=np.float32)
    secondary = np.array(secondary_rgb, dtype=np.float32)
    pixels = primary + (secondary - primary) * mix
    small_image = Image.fromarray(np.clip(pixels + 0.5, 0, 255).astype(np.uint8))
    return small_image.resize((width, height), Image.Resampling.BILINEAR)


def render_orb_sprite(orb: OrbState) -> Tuple[Image.Image, int]:
    """Soft radial glow, blurred, with the padding the blur needs."""
    padding = orb.blur * 2
    canvas = orb.size + padding * 2
    coords = np.arange(canvas, dtype=np.float32) + 0.5 - canvas / 2.0
    distance = np.sqrt(coords[np.newaxis, :] ** 2 + coords[:, np.newaxis] ** 2)
    falloff = np.clip(1.0 - distance / (orb.size / 2.0 * ORB_FADE_RATIO), 0.0, 1.0)
    rgba = np.zeros((canvas, canvas, 4), dtype=np.uint8)
    rgba[..., :3] = parse_hex_color(orb.color)
    rgba[..., 3] = (falloff * orb.alpha).astype(np.uint8)
    sprite = Image.fromarray(rgba).filter(ImageFilter.GaussianBlur(orb.blur))
    return sprite, padding


def render_text_sprite(
    text: str,
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
    color_rgb: Tuple[int, int, int],
    shadow: bool,
) -> TextSprite:
    """Render text onto a transparent sprite, optionally with a soft shadow."""
    left, top, right, bottom = font.getbbox(text)
    text_width = max(1, right - left)
    text_height = max(1, bottom - top)
    padding = SHADOW_BLUR * 2 if shadow else 0
    size = (text_width + padding * 2, text_height + padding * 2 + SHADOW_OFFSET)
    origin = (padding - left, padding - top)
    image = Image.new("RGBA", size, (0, 0, 0, 0))
    if shadow:
        shadow_layer = Image.new("RGBA", size, (0, 0, 0, 0))
        ImageDraw.Draw(shadow_layer).text(
            (origin[0], origin[1] + SHADOW_OFFSET), text, font=font, fill=SHADOW_COLOR
        )
        image = shadow_layer.filter(ImageFilter.GaussianBlur(SHADOW_BLUR / 2))
    ImageDraw.Draw(image).text(origin, text, font=font, fill=color_rgb + (255,))
    return TextSprite(
        image=image, padding=padding, text_width=text_width, text_height=text_height
    )


def render_panel(
    size: Tuple[int, int], radius: int, fill: Tuple[int, int, int, int]
) -> Image.Image:
    panel = Image.new("RGBA", (max(1, size[0]), max(1, size[1])), (0, 0, 0, 0))
    ImageDraw.Draw(panel).rounded_rectangle(
        (0, 0, panel.width - 1, panel.height - 1), radius=radius, fill=fill
    )
    return panel


@dataclass
class FrameRasterizer:
    """Turns FrameState records into RGB frames for one job."""

    composition: CompositionSpec
    font_path: str | None
    grid: Tuple[np.ndarray, np.ndarray] = field(init=False)
    black: Image.Image = field(init=False)
    fonts: dict[int, object] = field(default_factory=dict)
    orb_sprites: dict[tuple, Tuple[Image.Image, int]] = field(default_factory=dict)
    text_sprites: dict[tuple, TextSprite] = field(default_factory=dict)
    panels: dict[tuple, Image.Image] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.grid = build_gradient_grid(
            self.composition.width, self.composition.height, GRADIENT_DOWNSCALE
        )
        self.black = Image.new(
            "RGB", (self.composition.width, self.composition.height), (0, 0, 0)
        )

    def font(self, size: int):
        if size not in self.fonts:
            self.fonts[size] = load_caption_font(self.font_path, size)
        return self.fonts[size]

    def text_sprite(self, text: str, color: str, size: int, shadow: bool) -> TextSprite:
        key = (text, color.lower(), size, shadow)
        if key not in self.text_sprites:
            self.text_sprites[key] = render_text_sprite(
                text, self.font(size), parse_hex_color(color), shadow
            )
        return self.text_sprites[key]

    def panel(self, size: Tuple[int, int], radius: int, fill: tuple) -> Image.Image:
        key = (size, radius, fill)
        if key not in self.panels:
            self.panels[key] = render_panel(size, radius, fill)
        return self.panels[key]

    def rasterize(self, state: FrameState) -> Image.Image:
        """Draw background, captions and global fade for a frame."""
        frame_image = self.draw_background(state.background)
        if state.caption is not None:
            self.draw_caption(frame_image, state.caption)
        if state.opacity >= 1.0:
            return frame_image
        return Image.blend(self.black, frame_image, max(0.0, state.opacity))

    def draw_background(self, layer: BackgroundLayer) -> Image.Image:
        frame_image = render_gradient(
            self.grid,
            self.composition.width,
            self.composition.height,
            layer.rotation_degrees,
            parse_hex_color(layer.primary_color),
            parse_hex_color(layer.secondary_color),
        )
        for orb in layer.orbs:
            key = (orb.size, orb.color.lower(), orb.alpha, orb.blur)
            if key not in self.orb_sprites:
                self.orb_sprites[key] = render_orb_sprite(orb)
            sprite, padding = self.orb_sprites[key]
            frame_image.paste(
                sprite, (round(orb.x) - padding, round(orb.y) - padding), sprite
            )
        return frame_image

    def draw_caption(self, frame_image: Image.Image, layer: CaptionLayer) -> None:
        look = CAPTION_LOOKS[layer.style]
        baseline_bottom = self.composition.height * (1.0 - CAPTION_BOTTOM_RATIO)
        if layer.style == CaptionStyle.TIKTOK_BOUNCE:
            self.draw_bounce(frame_image, layer, look, baseline_bottom)
        elif layer.style == CaptionStyle.HIGHLIGHT_WORD:
            self.draw_highlight(frame_image, layer, look, baseline_bottom)
        else:
            self.draw_classic(frame_image, layer, look, baseline_bottom)

    def draw_bounce(
        self,
        frame_image: Image.Image,
        layer: CaptionLayer,
        look: CaptionLook,
        baseline_bottom: float,
    ) -> None:
        sprites = [
            self.text_sprite(word.text, word.color, look.font_size, look.shadow)
            for word in layer.words
        ]
        line_width = sum(sprite.text_width for sprite in sprites) + look.word_gap * (
            len(sprites) - 1
        )
        line_height = max(sprite.text_height for sprite in sprites)
        center_y = baseline_bottom - line_height / 2.0
        cursor_x = (self.composition.width - line_width) / 2.0
        for word, sprite in zip(layer.words, sprites):
            center_x = cursor_x + sprite.text_width / 2.0
            cursor_x += sprite.text_width + look.word_gap
            image = sprite.image
            if word.scale != 1.0:
                image = image.resize(
                    (
                        max(1, round(image.width * word.scale)),
                        max(1, round(image.height * word.scale)),
                    ),
                    Image.Resampling.BILINEAR,
                )
            # translate is applied inside the scale, as in a CSS transform list
            offset_y = word.offset_y * word.scale
            frame_image.paste(
                image,
                (
                    round(center_x - image.width / 2.0),
                    round(center_y + offset_y - image.height / 2.0),
                ),
                image,
            )

    def draw_highlight(
        self,
        frame_image: Image.Image,
        layer: CaptionLayer,
        look: CaptionLook,
        baseline_bottom: float,
    ) -> None:
        sprites = [
            self.text_sprite(word.text, word.color, look.font_size, False)
            for word in layer.words
        ]
        boxes = []
        for word, sprite in zip(layer.words, sprites):
            pad_x, pad_y = look.chip_padding if word.chip_color else look.chip_rest_padding
            boxes.append((sprite.text_width + pad_x * 2, sprite.text_height + pad_y * 2))
        panel_pad_x, panel_pad_y = look.panel_padding or (0, 0)
        content_width = sum(box[0] for box in boxes) + look.word_gap * (len(boxes) - 1)
        content_height = max(box[1] for box in boxes)
        panel_size = (content_width + panel_pad_x * 2, content_height + panel_pad_y * 2)
        panel_x = round((self.composition.width - panel_size[0]) / 2.0)
        panel_y = round(baseline_bottom - panel_size[1])
        panel = self.panel(panel_size, look.panel_radius, PANEL_RGBA)
        frame_image.paste(panel, (panel_x, panel_y), panel)

        cursor_x = panel_x + panel_pad_x
        for word, sprite, box in zip(layer.words, sprites, boxes):
            box_y = panel_y + panel_pad_y + (content_height - box[1]) // 2
            if word.chip_color:
                chip = self.panel(
                    box, look.chip_radius, parse_hex_color(word.chip_color) + (255,)
                )
                frame_image.paste(chip, (cursor_x, box_y), chip)
            text_x = cursor_x + (box[0] - sprite.text_width) // 2
            text_y = box_y + (box[1] - sprite.text_height) // 2
            frame_image.paste(sprite.image, (text_x, text_y), sprite.image)
            cursor_x += box[0] + look.word_gap

    def draw_classic(
        self,
        frame_image: Image.Image,
        layer: CaptionLayer,
        look: CaptionLook,
        baseline_bottom: float,
    ) -> None:
        line_text = layer.line_text or ""
        sprite = self.text_sprite(
            line_text, layer.words[0].color, look.font_size, False
        )
        panel_pad_x, panel_pad_y = look.panel_padding or (0, 0)
        panel_size = (
            sprite.text_width + panel_pad_x * 2,
            sprite.text_height + panel_pad_y * 2,
        )
        panel_x = round((self.composition.width - panel_size[0]) / 2.0)
        panel_y = round(baseline_bottom - panel_size[1])
        panel = self.panel(panel_size, look.panel_radius, PANEL_RGBA)
        frame_image.paste(panel, (panel_x, panel_y), panel)
        frame_image.paste(
            sprite.image, (panel_x + panel_pad_x, panel_y + panel_pad_y), sprite.image
        )


def build_h264_args() -> Tuple[str, ...]:
    """Build H.264 codec arguments."""
    return (
        "-crf",
        H264_CRF,
        "-preset",
        H264_PRESET,
    )


def open_ffmpeg_process(
    ffmpeg_path: str,
    composition: CompositionSpec,
    audio_source: str | None,
    output_path: Path,
    stderr_sink: BinaryIO,
) -> subprocess.Popen[bytes]:
    """Start ffmpeg for a raw RGB frame stream, logging errors into stderr_sink."""
    ffmpeg_cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-loglevel",
        FFMPEG_LOG_LEVEL,
        "-y",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-s",
        f"{composition.width}x{composition.height}",
        "-r",
        str(composition.fps),
        "-i",
        "-",
    ]
    if audio_source:
        ffmpeg_cmd.extend(["-i", audio_source, "-map", "0:v:0", "-map", "1:a:0"])
    else:
        ffmpeg_cmd.append("-an")
    ffmpeg_cmd.extend(["-c:v", H264_CODEC])
    ffmpeg_cmd.extend(build_h264_args())
    if audio_source:
        ffmpeg_cmd.extend(
            [
                "-c:a",
                AUDIO_CODEC,
                "-b:a",
                AUDIO_BITRATE,
                "-af",
                AUDIO_PAD_FILTER,
                "-shortest",
            ]
        )
    ffmpeg_cmd.extend(
        [
            "-pix_fmt",
            H264_PIXEL_FORMAT,
            "-movflags",
            "+faststart",
            "-f",
            "mp4",
            str(output_path),
        ]
    )

    try:
        return subprocess.Popen(
            ffmpeg_cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=stderr_sink,
        )
    except OSError as exc:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc


def partial_output_path(output_path: Path) -> Path:
    return output_path.with_name(f".{output_path.name}.partial")


@dataclass
class FfmpegReelEncoder:
    """Rasterizes frame states with Pillow and encodes them with ffmpeg."""

    progress_step: float = PROGRESS_STEP

    def encode(
        self,
        frames: Iterable[FrameState],
        composition: CompositionSpec,
        props: CompositionProps,
        bundle: BundleArtifact,
        output_path: Path,
    ) -> None:
        """Encode every frame into output_path; nothing is left behind on failure."""
        rasterizer = FrameRasterizer(composition, bundle.font_path)
        total_frames = composition.total_frames(props.duration_seconds)
        temp_path = partial_output_path(output_path)
        # unbounded sink; ffmpeg blocks once a stderr pipe fills
        with tempfile.TemporaryFile() as stderr_sink:
            ffmpeg_process = open_ffmpeg_process(
                bundle.ffmpeg_path, composition, props.audio_url, temp_path, stderr_sink
            )
            self.stream_frames(
                ffmpeg_process,
                stderr_sink,
                rasterizer,
                frames,
                total_frames,
                temp_path,
                output_path,
            )

    def stream_frames(
        self,
        ffmpeg_process: subprocess.Popen[bytes],
        stderr_sink: BinaryIO,
        rasterizer: FrameRasterizer,
        frames: Iterable[FrameState],
        total_frames: int,
        temp_path: Path,
        output_path: Path,
    ) -> None:
        if not ffmpeg_process.stdin:
            raise RenderPipelineError(FFMPEG_PROCESS_CODE, "ffmpeg stdin unavailable")

        completed = False
        next_report = self.progress_step
        try:
            try:
                for state in frames:
                    ffmpeg_process.stdin.write(rasterizer.rasterize(state).tobytes())
                    progress = (state.frame + 1) / total_frames
                    if progress >= next_report:
                        LOGGER.info(
                            "render_reel_video.progress %s%% (%s/%s frames)",
                            int(round(progress * 100)),
                            state.frame + 1,
                            total_frames,
                        )
                        next_report = (
                            math.floor(progress / self.progress_step + 1e-9) + 1
                        ) * self.progress_step
                ffmpeg_process.stdin.close()
            except BrokenPipeError:
                # ffmpeg exited early; its stderr explains why
                pass
            return_code = ffmpeg_process.wait()
            stderr_sink.seek(0)
            stderr_bytes = stderr_sink.read()

            if return_code != 0:
                stderr_text = stderr_bytes.decode("utf-8", errors="replace").strip()
                raise RenderPipelineError(
                    FFMPEG_PROCESS_CODE,
                    f"ffmpeg failed with exit code {return_code}. {stderr_text}",
                )
            try:
                os.replace(temp_path, output_path)
            except OSError as exc:
                raise RenderPipelineError(
                    OUTPUT_FILE_CODE, f"failed to move output into place: {exc}"
                ) from exc
            completed = True
        finally:
            if ffmpeg_process.stdin and not ffmpeg_process.stdin.closed:
                try:
                    ffmpeg_process.stdin.close()
                except BrokenPipeError:
                    pass
            if ffmpeg_process.poll() is None:
                ffmpeg_process.kill()
                ffmpeg_process.wait()
            if not completed:
                temp_path.unlink(missing_ok=True)


def read_props_file(file_path: str) -> CompositionProps:
    """Load inputProps JSON from disk."""
    try:
        with open(file_path, "rb") as file_handle:
            raw_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"props file not found: {file_path}"
        ) from exc
    try:
        raw_props = json.loads(raw_bytes.decode("utf-8", errors="strict"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"props file is not valid UTF-8 JSON: {exc}"
        ) from exc
    return parse_composition_props(raw_props)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="render_reel_video.py", add_help=True)
    parser.add_argument("--props-file", required=True)
    parser.add_argument("--output-video-file", default="reel.mp4")
    parser.add_argument("--composition", default=DEFAULT_COMPOSITION_ID)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--ffmpeg-path", default="ffmpeg")
    parser.add_argument("--emit-frame-state", type=int, default=None)
    return parser.parse_args(list(argv))


def emit_frame_state(
    props: CompositionProps, composition: CompositionSpec, frame: int
) -> None:
    """Write the composite state of one frame to stdout."""
    total_frames = composition.total_frames(props.duration_seconds)
    if frame < 0 or frame >= total_frames:
        raise RenderValidationError(
            INVALID_PROPS_CODE, f"frame must be within [0, {total_frames})"
        )
    state = compose_frame(frame, props, composition)
    sys.stdout.write(serialize_frame_state(state).decode("utf-8"))
    sys.stdout.write("\n")


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
        props = read_props_file(args.props_file)
        if args.emit_frame_state is not None:
            registry = build_composition_registry()
            composition = registry.get(args.composition)
            if composition is None:
                raise RenderValidationError(
                    UNKNOWN_COMPOSITION_CODE, f"Unknown composition: {args.composition}"
                )
            emit_frame_state(props, composition, args.emit_frame_state)
            return 0
        if not args.output_video_file.lower().endswith(".mp4"):
            raise RenderValidationError(
                INVALID_PROPS_CODE, "output_video_file must end with .mp4"
            )
        bundle = build_bundle(args.fonts_dir, args.ffmpeg_path)
        composition = bundle.select_composition(args.composition)
        output_path = Path(args.output_video_file)
        FfmpegReelEncoder().encode(
            iter_frame_states(props, composition),
            composition,
            props,
            bundle,
            output_path,
        )
        LOGGER.info("render_reel_video.completed output=%s", output_path)
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_reel_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
