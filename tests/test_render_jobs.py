"""Tests for render job execution."""

from __future__ import annotations

from concurrent import futures
from pathlib import Path
import time
from typing import Iterable

import pytest

from domain.reel_composition import CompositionProps, CompositionSpec, RenderValidationError
from service.bundle_cache import BundleArtifact, BundleCache
from service.compositor import FrameState
from service.render_jobs import (
    AUTHORIZATION_CODE,
    RENDER_FAILED_CODE,
    RenderAuthorizationError,
    RenderJobError,
    RenderJobService,
    build_output_filename,
    is_authorized,
)

SECRET = "s3cret"


def build_payload(**overrides: object) -> dict[str, object]:
    """Build a render request payload."""
    payload: dict[str, object] = {
        "composition": "SimpleReel",
        "inputProps": {
            "audioUrl": "",
            "wordTimestamps": [
                {"word": "Hello", "start": 0, "end": 0.5},
                {"word": "World", "start": 0.5, "end": 1},
            ],
            "duration": 2,
            "captionStyle": "highlight_word",
            "primaryColor": "#0f0f23",
            "accentColor": "#ff3366",
        },
    }
    payload.update(overrides)
    return payload


class StubEncoder:
    """Encoder that writes a placeholder file and records frames."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.frame_counts: list[int] = []

    def encode(
        self,
        frames: Iterable[FrameState],
        composition: CompositionSpec,
        props: CompositionProps,
        bundle: BundleArtifact,
        output_path: Path,
    ) -> None:
        output_path.write_bytes(b"partial")
        if self.error is not None:
            raise self.error
        self.frame_counts.append(sum(1 for _ in frames))
        output_path.write_bytes(b"video")


class CountingBuilder:
    """Bundle builder that counts invocations."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> BundleArtifact:
        self.calls += 1
        return BundleArtifact(
            compositions={"SimpleReel": CompositionSpec("SimpleReel")},
            font_path=None,
            ffmpeg_path="ffmpeg",
            built_at=time.time(),
        )


def build_service(
    output_dir: Path,
    encoder: StubEncoder,
    builder: CountingBuilder,
    **overrides: object,
) -> RenderJobService:
    """Build a job service with stubbed collaborators."""
    options: dict[str, object] = {
        "bundle_cache": BundleCache(builder=builder),
        "encoder": encoder,
        "output_dir": output_dir,
        "executor": futures.ThreadPoolExecutor(max_workers=2),
        "secret": SECRET,
    }
    options.update(overrides)
    return RenderJobService(**options)


def test_is_authorized() -> None:
    """Compare bearer credentials against the secret."""
    assert is_authorized(None, None)
    assert is_authorized("", "anything")
    assert is_authorized(SECRET, f"Bearer {SECRET}")
    assert not is_authorized(SECRET, None)
    assert not is_authorized(SECRET, SECRET)
    assert not is_authorized(SECRET, "Bearer wrong")


def test_build_output_filename() -> None:
    """Key output names by user, milliseconds and suffix."""
    name = build_output_filename("anon", 1700000000.5, "abcd1234")
    assert name == "reel-anon-1700000000500-abcd1234.mp4"


def test_unauthorized_request_skips_everything(tmp_path: Path) -> None:
    """Reject bad credentials before parsing or building."""
    builder = CountingBuilder()
    service = build_service(tmp_path, StubEncoder(), builder)
    with pytest.raises(RenderAuthorizationError) as exc_info:
        service.submit_render({}, "Bearer nope", "http://localhost")
    assert exc_info.value.code == AUTHORIZATION_CODE
    assert str(exc_info.value) == "Unauthorized"
    assert builder.calls == 0
    service.executor.shutdown()


def test_validation_happens_before_bundle(tmp_path: Path) -> None:
    """Reject missing fields without building the bundle."""
    builder = CountingBuilder()
    service = build_service(tmp_path, StubEncoder(), builder)
    with pytest.raises(RenderValidationError) as exc_info:
        service.submit_render({}, f"Bearer {SECRET}", "http://localhost")
    assert str(exc_info.value) == "Missing composition or inputProps"
    assert builder.calls == 0
    service.executor.shutdown()


def test_successful_render(tmp_path: Path) -> None:
    """Encode every frame and report where the video lives."""
    builder = CountingBuilder()
    encoder = StubEncoder()
    service = build_service(
        tmp_path,
        encoder,
        builder,
        clock=lambda: 1700000000.0,
        suffix_factory=lambda: "abcd1234",
    )
    result = service.submit_render(
        build_payload(userId="user 1"), f"Bearer {SECRET}", "http://render.local/"
    )
    filename = "reel-user_1-1700000000000-abcd1234.mp4"
    assert result.video_url == f"http://render.local/videos/{filename}"
    assert result.output_path == tmp_path / filename
    assert result.output_path.read_bytes() == b"video"
    assert encoder.frame_counts == [60]
    payload = result.to_payload()
    assert payload["status"] == "completed"
    assert payload["outputPath"] == str(tmp_path / filename)
    assert payload["renderTime"] >= 0
    assert service.active_job_count() == 0
    service.executor.shutdown()


def test_failed_encode_removes_output(tmp_path: Path) -> None:
    """Remove partial output and surface the failure detail."""
    encoder = StubEncoder(error=RuntimeError("encoder exploded"))
    service = build_service(tmp_path, encoder, CountingBuilder())
    with pytest.raises(RenderJobError) as exc_info:
        service.submit_render(build_payload(), f"Bearer {SECRET}", "http://localhost")
    assert exc_info.value.code == RENDER_FAILED_CODE
    assert str(exc_info.value) == "Render failed"
    assert exc_info.value.detail == "encoder exploded"
    assert list(tmp_path.iterdir()) == []
    assert service.active_job_count() == 0
    service.executor.shutdown()


def test_unknown_composition(tmp_path: Path) -> None:
    """Reject compositions missing from the bundle."""
    builder = CountingBuilder()
    service = build_service(tmp_path, StubEncoder(), builder)
    with pytest.raises(RenderValidationError) as exc_info:
        service.submit_render(
            build_payload(composition="Nope"), f"Bearer {SECRET}", "http://localhost"
        )
    assert exc_info.value.code == "reel_render.input.unknown_composition"
    assert list(tmp_path.iterdir()) == []
    service.executor.shutdown()


def test_same_millisecond_renders_get_distinct_files(tmp_path: Path) -> None:
    """Keep outputs apart when user and timestamp collide."""
    service = build_service(
        tmp_path, StubEncoder(), CountingBuilder(), clock=lambda: 1700000000.0
    )
    first = service.submit_render(build_payload(), f"Bearer {SECRET}", "http://h")
    second = service.submit_render(build_payload(), f"Bearer {SECRET}", "http://h")
    assert first.output_path != second.output_path
    assert first.output_path.name.startswith("reel-anon-1700000000000-")
    assert len(list(tmp_path.iterdir())) == 2
    service.executor.shutdown()
