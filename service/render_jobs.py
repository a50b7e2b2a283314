"""Render job execution: validation, authorization, bundle, encode."""

from __future__ import annotations

from concurrent import futures
from dataclasses import dataclass, field
from enum import Enum
import hmac
import logging
from pathlib import Path
import threading
import time
from typing import Callable, Iterable, Protocol
import uuid

from domain.reel_composition import (
    CompositionProps,
    CompositionSpec,
    RenderRequest,
    RenderValidationError,
    parse_render_request,
)
from service.bundle_cache import BundleArtifact, BundleBuildError, BundleCache
from service.compositor import FrameState, iter_frame_states

LOGGER = logging.getLogger("reel_render.jobs")

AUTHORIZATION_CODE = "reel_render.auth.unauthorized"
RENDER_FAILED_CODE = "reel_render.render.failed"
OUTPUT_CLEANUP_CODE = "reel_render.render.cleanup_failed"
OUTPUT_PREFIX = "reel"
OUTPUT_SUFFIX = ".mp4"
VIDEO_ROUTE = "/videos"


class RenderAuthorizationError(RuntimeError):
    """Bearer credential mismatch."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class RenderJobError(RuntimeError):
    """Render execution failure with a diagnostic detail."""

    def __init__(self, code: str, message: str, detail: str) -> None:
        super().__init__(message)
        self.code = code
        self.detail = detail


class JobStatus(str, Enum):
    """Lifecycle states for render jobs."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FrameEncoder(Protocol):
    """Turns a frame-state sequence into an encoded file at output_path."""

    def encode(
        self,
        frames: Iterable[FrameState],
        composition: CompositionSpec,
        props: CompositionProps,
        bundle: BundleArtifact,
        output_path: Path,
    ) -> None:
        ...


@dataclass
class RenderJob:
    """State of a single render submission."""

    job_id: str
    composition_id: str
    input_props: CompositionProps
    user_id: str
    created_at: float
    status: JobStatus = JobStatus.QUEUED
    output_path: Path | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None


@dataclass(frozen=True)
class RenderResult:
    """Successful render outcome."""

    video_url: str
    output_path: Path
    render_time_seconds: float

    def to_payload(self) -> dict[str, object]:
        return {
            "status": JobStatus.COMPLETED.value,
            "videoUrl": self.video_url,
            "outputPath": str(self.output_path),
            "renderTime": self.render_time_seconds,
        }


def is_authorized(secret: str | None, authorization: str | None) -> bool:
    """Check an Authorization header against the shared secret."""
    if not secret:
        return True
    expected = f"Bearer {secret}".encode("utf-8")
    presented = (authorization or "").strip().encode("utf-8")
    return hmac.compare_digest(expected, presented)


def build_output_filename(user_id: str, submitted_at: float, suffix: str) -> str:
    """Unique output name keyed by user, submission time and a random suffix."""
    return f"{OUTPUT_PREFIX}-{user_id}-{int(submitted_at * 1000)}-{suffix}{OUTPUT_SUFFIX}"


def remove_partial_output(output_path: Path) -> None:
    try:
        output_path.unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.error("%s: %s (%s)", OUTPUT_CLEANUP_CODE, output_path, exc)


@dataclass
class RenderJobService:
    """Runs render submissions on a bounded worker pool."""

    bundle_cache: BundleCache
    encoder: FrameEncoder
    output_dir: Path
    executor: futures.Executor
    secret: str | None = None
    clock: Callable[[], float] = time.time
    timer: Callable[[], float] = time.monotonic
    suffix_factory: Callable[[], str] = field(default=lambda: uuid.uuid4().hex[:8])
    lock: threading.Lock = field(default_factory=threading.Lock)
    active_jobs: dict[str, RenderJob] = field(default_factory=dict)

    def submit_render(
        self,
        payload: object,
        authorization: str | None,
        base_url: str,
    ) -> RenderResult:
        """Authorize, validate, then run a render and wait for it."""
        self.authorize(authorization)
        request = parse_render_request(payload)
        job = self.create_job(request)
        LOGGER.info(
            "reel_render.jobs.queued job_id=%s composition=%s user=%s",
            job.job_id,
            job.composition_id,
            job.user_id,
        )
        future = self.executor.submit(self.execute_job, job, base_url)
        return future.result()

    def authorize(self, authorization: str | None) -> None:
        if not is_authorized(self.secret, authorization):
            raise RenderAuthorizationError(AUTHORIZATION_CODE, "Unauthorized")

    def create_job(self, request: RenderRequest) -> RenderJob:
        job = RenderJob(
            job_id=uuid.uuid4().hex,
            composition_id=request.composition_id,
            input_props=request.props,
            user_id=request.user_id,
            created_at=self.clock(),
        )
        with self.lock:
            self.active_jobs[job.job_id] = job
        return job

    def active_job_count(self) -> int:
        with self.lock:
            return len(self.active_jobs)

    def execute_job(self, job: RenderJob, base_url: str) -> RenderResult:
        """Resolve the bundle and encode every frame of the composition."""
        started = self.timer()
        job.status = JobStatus.RUNNING
        job.started_at = self.clock()
        LOGGER.info("reel_render.jobs.running job_id=%s", job.job_id)
        try:
            bundle = self.bundle_cache.resolve()
            composition = bundle.select_composition(job.composition_id)
            filename = build_output_filename(
                job.user_id, job.created_at, self.suffix_factory()
            )
            output_path = self.output_dir / filename
            job.output_path = output_path
            frames = iter_frame_states(job.input_props, composition)
            try:
                self.encoder.encode(
                    frames, composition, job.input_props, bundle, output_path
                )
            except Exception as exc:
                remove_partial_output(output_path)
                detail = str(exc).strip() or type(exc).__name__
                raise RenderJobError(RENDER_FAILED_CODE, "Render failed", detail) from exc
        except (RenderValidationError, BundleBuildError, RenderJobError) as exc:
            self.finish_job(job, JobStatus.FAILED, f"{exc.code}: {exc}")
            raise
        except Exception as exc:
            self.finish_job(job, JobStatus.FAILED, f"reel_render.unhandled_error: {exc}")
            raise
        render_time = self.timer() - started
        self.finish_job(job, JobStatus.COMPLETED, None)
        LOGGER.info(
            "reel_render.jobs.completed job_id=%s output=%s render_time=%.1fs",
            job.job_id,
            output_path,
            render_time,
        )
        return RenderResult(
            video_url=f"{base_url.rstrip('/')}{VIDEO_ROUTE}/{filename}",
            output_path=output_path,
            render_time_seconds=render_time,
        )

    def finish_job(self, job: RenderJob, status: JobStatus, error: str | None) -> None:
        job.status = status
        job.error = error
        job.completed_at = self.clock()
        if error is not None:
            LOGGER.error("reel_render.jobs.failed job_id=%s %s", job.job_id, error)
        with self.lock:
            self.active_jobs.pop(job.job_id, None)
