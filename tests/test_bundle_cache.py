"""Tests for the single-flight bundle cache."""

from __future__ import annotations

from concurrent import futures
import threading
import time

import pytest

from domain.reel_composition import CompositionSpec, RenderValidationError
from service.bundle_cache import (
    BUNDLE_BUILD_CODE,
    BundleArtifact,
    BundleBuildError,
    BundleCache,
)


def build_artifact() -> BundleArtifact:
    """Build a minimal bundle artifact."""
    return BundleArtifact(
        compositions={"SimpleReel": CompositionSpec("SimpleReel")},
        font_path=None,
        ffmpeg_path="ffmpeg",
        built_at=time.time(),
    )


class CountingBuilder:
    """Builder that records invocations and can block until released."""

    def __init__(self, failures: int = 0) -> None:
        self.calls = 0
        self.failures = failures
        self.lock = threading.Lock()
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def __call__(self) -> BundleArtifact:
        with self.lock:
            self.calls += 1
            attempt = self.calls
        self.started.set()
        self.release.wait(timeout=5)
        if attempt <= self.failures:
            raise RuntimeError("fonts missing")
        return build_artifact()


def test_concurrent_resolves_build_once() -> None:
    """Share one build among concurrent callers."""
    builder = CountingBuilder()
    builder.release.clear()
    cache = BundleCache(builder=builder)
    with futures.ThreadPoolExecutor(max_workers=8) as executor:
        results = [executor.submit(cache.resolve) for _ in range(8)]
        assert builder.started.wait(timeout=5)
        time.sleep(0.1)
        builder.release.set()
        artifacts = [result.result(timeout=5) for result in results]
    assert builder.calls == 1
    assert cache.build_count == 1
    assert all(artifact is artifacts[0] for artifact in artifacts)
    assert cache.resolve() is artifacts[0]
    assert builder.calls == 1


def test_failed_build_is_retried() -> None:
    """Report a failure and rebuild on the next resolve."""
    builder = CountingBuilder(failures=1)
    cache = BundleCache(builder=builder)
    with pytest.raises(BundleBuildError) as exc_info:
        cache.resolve()
    assert exc_info.value.code == BUNDLE_BUILD_CODE
    assert "fonts missing" in str(exc_info.value)
    assert not cache.is_ready()
    artifact = cache.resolve()
    assert artifact.select_composition("SimpleReel").fps == 30
    assert cache.build_count == 2
    assert cache.is_ready()


def test_state_checks_do_not_block() -> None:
    """Report building and ready states without waiting on the build."""
    builder = CountingBuilder()
    builder.release.clear()
    cache = BundleCache(builder=builder)
    assert not cache.is_ready()
    assert not cache.is_building()
    with futures.ThreadPoolExecutor(max_workers=1) as executor:
        warm_future = cache.warm(executor)
        assert builder.started.wait(timeout=5)
        assert cache.is_building()
        assert not cache.is_ready()
        builder.release.set()
        warm_future.result(timeout=5)
    assert cache.is_ready()
    assert not cache.is_building()


def test_warm_failure_is_logged_not_raised() -> None:
    """Log a failed warm-up and leave the cache retryable."""
    cache = BundleCache(builder=CountingBuilder(failures=1))
    with futures.ThreadPoolExecutor(max_workers=1) as executor:
        assert cache.warm(executor).result(timeout=5) is None
    assert not cache.is_ready()
    assert cache.resolve() is not None


def test_unknown_composition_is_rejected() -> None:
    """Reject compositions the bundle does not register."""
    with pytest.raises(RenderValidationError) as exc_info:
        build_artifact().select_composition("Missing")
    assert exc_info.value.code == "reel_render.input.unknown_composition"


def test_registry_cannot_be_mutated_after_build() -> None:
    """Freeze the composition registry shared by every job."""
    registry = {"SimpleReel": CompositionSpec("SimpleReel")}
    artifact = BundleArtifact(
        compositions=registry,
        font_path=None,
        ffmpeg_path="ffmpeg",
        built_at=0.0,
    )
    with pytest.raises(TypeError):
        artifact.compositions["Injected"] = CompositionSpec("Injected")  # type: ignore[index]
    registry["Injected"] = CompositionSpec("Injected")
    with pytest.raises(RenderValidationError):
        artifact.select_composition("Injected")
