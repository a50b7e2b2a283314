"""Process-wide single-flight cache for the render bundle."""

from __future__ import annotations

from concurrent import futures
from dataclasses import dataclass, field
import logging
import threading
from types import MappingProxyType
from typing import Callable, Mapping

from domain.reel_composition import (
    UNKNOWN_COMPOSITION_CODE,
    CompositionSpec,
    RenderValidationError,
)

LOGGER = logging.getLogger("reel_render.bundle")

BUNDLE_BUILD_CODE = "reel_render.bundle.build_failed"


class BundleBuildError(RuntimeError):
    """Bundle build failure with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class BundleArtifact:
    """Compiled render assets shared by every job in the process."""

    compositions: Mapping[str, CompositionSpec]
    font_path: str | None
    ffmpeg_path: str
    built_at: float

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "compositions", MappingProxyType(dict(self.compositions))
        )

    def select_composition(self, composition_id: str) -> CompositionSpec:
        """Look up a registered composition by id."""
        composition = self.compositions.get(composition_id)
        if composition is None:
            raise RenderValidationError(
                UNKNOWN_COMPOSITION_CODE,
                f"Unknown composition: {composition_id}",
            )
        return composition


@dataclass
class BundleCache:
    """Builds the bundle at most once; concurrent callers share the result.

    A failed build is reported to every caller waiting on it and cleared, so
    the next resolve() starts a fresh build.
    """

    builder: Callable[[], BundleArtifact]
    lock: threading.Lock = field(default_factory=threading.Lock)
    pending: futures.Future | None = None
    build_count: int = 0

    def resolve(self) -> BundleArtifact:
        """Return the bundle, building it if no build has happened yet."""
        with self.lock:
            future = self.pending
            owner = future is None
            if owner:
                future = futures.Future()
                self.pending = future
                self.build_count += 1
        if owner:
            self._build(future)
        return future.result()

    def _build(self, future: futures.Future) -> None:
        LOGGER.info("reel_render.bundle.build_started attempt=%s", self.build_count)
        try:
            artifact = self.builder()
        except BundleBuildError as exc:
            self._fail(future, exc)
            return
        except Exception as exc:
            error = BundleBuildError(BUNDLE_BUILD_CODE, f"bundle build failed: {exc}")
            error.__cause__ = exc
            self._fail(future, error)
            return
        LOGGER.info("reel_render.bundle.build_completed built_at=%.3f", artifact.built_at)
        future.set_result(artifact)

    def _fail(self, future: futures.Future, exc: BundleBuildError) -> None:
        LOGGER.error("%s: %s", exc.code, exc)
        with self.lock:
            if self.pending is future:
                self.pending = None
        future.set_exception(exc)

    def is_ready(self) -> bool:
        """True once a build has completed successfully. Never blocks."""
        future = self.pending
        if future is None or not future.done():
            return False
        return future.exception(timeout=0) is None

    def is_building(self) -> bool:
        future = self.pending
        return future is not None and not future.done()

    def warm(self, executor: futures.Executor) -> futures.Future:
        """Trigger the build in the background."""
        return executor.submit(self._warm)

    def _warm(self) -> None:
        try:
            self.resolve()
        except BundleBuildError:
            LOGGER.warning("reel_render.bundle.prebuild_failed: will retry on next request")
