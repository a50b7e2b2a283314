"""HTTP render service for reel compositions."""

from __future__ import annotations

import argparse
import dataclasses
import functools
import json
import logging
import mimetypes
import os
import sys
import time
from concurrent import futures
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Sequence
from urllib.parse import unquote, urlparse

import render_reel_video
from domain.reel_composition import RenderValidationError
from service.bundle_cache import BundleBuildError, BundleCache
from service.render_jobs import (
    FrameEncoder,
    RenderAuthorizationError,
    RenderJobError,
    RenderJobService,
)

LOGGER = logging.getLogger("reel_render_backend")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3001
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_MAX_BODY_BYTES = 50 * 1024 * 1024
STREAM_CHUNK_BYTES = 64 * 1024

HOST_ENV = "REEL_RENDER_HOST"
PORT_ENV = "REEL_RENDER_PORT"
OUTPUT_DIR_ENV = "REEL_RENDER_OUTPUT_DIR"
SECRET_ENV = "REEL_RENDER_SECRET"
FONTS_DIR_ENV = "REEL_RENDER_FONTS_DIR"
FFMPEG_PATH_ENV = "REEL_RENDER_FFMPEG_PATH"
MAX_WORKERS_ENV = "REEL_RENDER_MAX_WORKERS"
MAX_BODY_BYTES_ENV = "REEL_RENDER_MAX_BODY_BYTES"
ALLOWED_ORIGINS_ENV = "REEL_RENDER_ALLOWED_ORIGINS"
PUBLIC_BASE_URL_ENV = "REEL_RENDER_PUBLIC_BASE_URL"
PREBUNDLE_ENV = "REEL_RENDER_PREBUNDLE"
LOG_LEVEL_ENV = "REEL_RENDER_LOG_LEVEL"

BACKEND_CONFIG_CODE = "reel_render_backend.config.invalid"
BACKEND_REQUEST_CODE = "reel_render_backend.request.invalid"
BACKEND_BODY_TOO_LARGE_CODE = "reel_render_backend.request.too_large"
BACKEND_NOT_FOUND_CODE = "reel_render_backend.path.not_found"
BACKEND_OUTPUT_READ_CODE = "reel_render_backend.output.read_failed"
BACKEND_UNHANDLED_CODE = "reel_render_backend.unhandled_error"

RENDER_ROUTE = "/render"
HEALTH_ROUTE = "/health"
STATIC_ROUTES = ("/videos/", "/output/")
RENDER_FAILED_MESSAGE = "Render failed"


class BackendError(RuntimeError):
    """Backend error with a stable code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclasses.dataclass(frozen=True)
class BackendConfig:
    """Backend configuration."""

    host: str
    port: int
    output_dir: Path
    secret: str | None
    fonts_dir: str | None
    ffmpeg_path: str
    max_workers: int
    max_body_bytes: int
    allowed_origins: tuple[str, ...]
    allow_any_origin: bool
    public_base_url: str | None
    prebundle: bool

    def __post_init__(self) -> None:
        if not self.host.strip():
            raise ValueError("host must be non-empty")
        if self.port < 0 or self.port > 65535:
            raise ValueError("port must be between 0 and 65535")
        if not self.ffmpeg_path.strip():
            raise ValueError("ffmpeg-path must be non-empty")
        if self.max_workers <= 0:
            raise ValueError("max-workers must be positive")
        if self.max_body_bytes <= 0:
            raise ValueError("max-body-bytes must be positive")
        if self.public_base_url is not None:
            parsed = urlparse(self.public_base_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError("public-base-url must be an http(s) URL")


def parse_positive_int(raw_value: str, label: str) -> int:
    """Parse a positive integer from a string."""
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{label} must be positive")
    return value


def parse_bool(raw_value: str) -> bool:
    """Parse a boolean from a string."""
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def read_env_int(env: dict[str, str], key: str, label: str, fallback: int) -> int:
    """Read a positive integer from the environment."""
    raw_value = env.get(key, "").strip()
    if not raw_value:
        return fallback
    return parse_positive_int(raw_value, label)


def read_env_optional(env: dict[str, str], key: str) -> str | None:
    return env.get(key, "").strip() or None


def parse_allowed_origins(raw_value: str) -> tuple[tuple[str, ...], bool]:
    """Parse allowed origins from a comma-delimited string."""
    trimmed = raw_value.strip()
    if not trimmed:
        return tuple(), True
    if trimmed == "*":
        return tuple(), True
    values = tuple(value.strip() for value in trimmed.split(",") if value.strip())
    return values, False


def default_max_workers() -> int:
    return os.cpu_count() or 1


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse backend CLI arguments."""
    parser = argparse.ArgumentParser(prog="reel_render_server", add_help=True)
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--output-dir", default=None)
    parser.add_argument("--secret", default=None)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--ffmpeg-path", default=None)
    parser.add_argument("--max-workers", type=int, default=None)
    parser.add_argument("--max-body-bytes", type=int, default=None)
    parser.add_argument("--allowed-origins", default=None)
    parser.add_argument("--public-base-url", default=None)
    parser.add_argument("--no-prebundle", action="store_true")
    return parser.parse_args(list(argv))


def configure_logging(env: dict[str, str]) -> None:
    """Configure logging from environment."""
    level_name = env.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.INFO
    if level_name == "DEBUG":
        level = logging.DEBUG
    elif level_name == "WARNING":
        level = logging.WARNING
    elif level_name == "ERROR":
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def load_config(args: argparse.Namespace, env: dict[str, str]) -> BackendConfig:
    """Load backend configuration from args and environment."""
    host = env.get(HOST_ENV, DEFAULT_HOST)
    if args.host:
        host = args.host
    port = read_env_int(env, PORT_ENV, "port", DEFAULT_PORT)
    if args.port is not None:
        port = args.port
    output_dir = Path(env.get(OUTPUT_DIR_ENV, DEFAULT_OUTPUT_DIR))
    if args.output_dir:
        output_dir = Path(args.output_dir)
    secret = args.secret
    if secret is None:
        secret = read_env_optional(env, SECRET_ENV)
    fonts_dir = args.fonts_dir
    if fonts_dir is None:
        fonts_dir = read_env_optional(env, FONTS_DIR_ENV)
    ffmpeg_path = env.get(FFMPEG_PATH_ENV, "ffmpeg")
    if args.ffmpeg_path is not None:
        ffmpeg_path = args.ffmpeg_path
    max_workers = read_env_int(
        env, MAX_WORKERS_ENV, "max-workers", default_max_workers()
    )
    if args.max_workers is not None:
        max_workers = args.max_workers
    max_body_bytes = read_env_int(
        env, MAX_BODY_BYTES_ENV, "max-body-bytes", DEFAULT_MAX_BODY_BYTES
    )
    if args.max_body_bytes is not None:
        max_body_bytes = args.max_body_bytes
    allowed_raw = env.get(ALLOWED_ORIGINS_ENV, "").strip()
    if args.allowed_origins is not None:
        allowed_raw = args.allowed_origins
    allowed_origins, allow_any = parse_allowed_origins(allowed_raw)
    public_base_url = args.public_base_url
    if public_base_url is None:
        public_base_url = read_env_optional(env, PUBLIC_BASE_URL_ENV)
    prebundle = True
    if env.get(PREBUNDLE_ENV, "").strip():
        prebundle = parse_bool(env[PREBUNDLE_ENV])
    if args.no_prebundle:
        prebundle = False
    return BackendConfig(
        host=str(host),
        port=int(port),
        output_dir=output_dir,
        secret=secret or None,
        fonts_dir=fonts_dir or None,
        ffmpeg_path=str(ffmpeg_path),
        max_workers=int(max_workers),
        max_body_bytes=int(max_body_bytes),
        allowed_origins=allowed_origins,
        allow_any_origin=allow_any,
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        prebundle=prebundle,
    )


def parse_content_length(raw_length: str | None) -> int:
    """Parse Content-Length, treating a missing header as an empty body."""
    if raw_length is None or not raw_length.strip():
        return 0
    try:
        length = int(raw_length)
    except ValueError as exc:
        raise BackendError(
            BACKEND_REQUEST_CODE, "Content-Length must be an integer"
        ) from exc
    if length < 0:
        raise BackendError(BACKEND_REQUEST_CODE, "Content-Length must be non-negative")
    return length


def decode_json_body(body: bytes) -> object:
    """Decode a JSON request body; an empty body is an empty object."""
    if not body.strip():
        return {}
    try:
        return json.loads(body.decode("utf-8", errors="strict"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BackendError(
            BACKEND_REQUEST_CODE, f"request body is not valid JSON: {exc}"
        ) from exc


def resolve_static_file(output_dir: Path, raw_name: str) -> Path | None:
    """Map a URL file name onto a file inside output_dir, or None."""
    name = unquote(raw_name)
    if not name or name.startswith(".") or "/" in name or "\\" in name or "\x00" in name:
        return None
    root = output_dir.resolve()
    candidate = (root / name).resolve()
    if candidate.parent != root or not candidate.is_file():
        return None
    return candidate


def build_service(
    config: BackendConfig,
    encoder: FrameEncoder | None = None,
    bundle_builder=None,
) -> RenderJobService:
    """Wire the bundle cache, encoder and worker pool for the service."""
    config.output_dir.mkdir(parents=True, exist_ok=True)
    if bundle_builder is None:
        bundle_builder = functools.partial(
            render_reel_video.build_bundle, config.fonts_dir, config.ffmpeg_path
        )
    return RenderJobService(
        bundle_cache=BundleCache(builder=bundle_builder),
        encoder=encoder or render_reel_video.FfmpegReelEncoder(),
        output_dir=config.output_dir,
        executor=futures.ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="reel-render"
        ),
        secret=config.secret,
        clock=time.time,
    )


def build_server(
    config: BackendConfig, service: RenderJobService
) -> ThreadingHTTPServer:
    """Create the HTTP server bound to the configured address."""

    class RenderHandler(BaseHTTPRequestHandler):
        """HTTP request handler for the render service."""

        protocol_version = "HTTP/1.1"

        def log_message(self, format: str, *args: object) -> None:
            LOGGER.info("%s - %s", self.client_address[0], format % args)

        def send_cors_headers(self) -> None:
            origin = self.headers.get("Origin")
            if config.allow_any_origin:
                self.send_header("Access-Control-Allow-Origin", "*")
                return
            if not origin:
                return
            if origin in config.allowed_origins:
                self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Vary", "Origin")

        def send_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_cors_headers()
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def send_error_response(
            self,
            status: HTTPStatus,
            message: str,
            code: str,
            details: str | None = None,
        ) -> None:
            payload: dict[str, object] = {"error": message, "code": code}
            if details is not None:
                payload["details"] = details
            self.send_json(status, payload)

        def request_base_url(self) -> str:
            if config.public_base_url:
                return config.public_base_url
            host = self.headers.get("Host") or f"{config.host}:{config.port}"
            return f"http://{host}"

        def do_OPTIONS(self) -> None:
            self.send_response(HTTPStatus.NO_CONTENT)
            self.send_cors_headers()
            self.send_header("Access-Control-Allow-Methods", "GET,POST,OPTIONS")
            self.send_header(
                "Access-Control-Allow-Headers", "Content-Type, Authorization"
            )
            self.send_header("Access-Control-Max-Age", "600")
            self.send_header("Content-Length", "0")
            self.end_headers()

        def do_GET(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path == HEALTH_ROUTE:
                self.send_json(
                    HTTPStatus.OK,
                    {
                        "status": "ok",
                        "bundled": service.bundle_cache.is_ready(),
                        "building": service.bundle_cache.is_building(),
                    },
                )
                return
            for prefix in STATIC_ROUTES:
                if parsed.path.startswith(prefix):
                    self.send_static_file(parsed.path[len(prefix):])
                    return
            self.send_error_response(
                HTTPStatus.NOT_FOUND, "not found", BACKEND_NOT_FOUND_CODE
            )

        def send_static_file(self, raw_name: str) -> None:
            file_path = resolve_static_file(config.output_dir, raw_name)
            if file_path is None:
                self.send_error_response(
                    HTTPStatus.NOT_FOUND, "not found", BACKEND_NOT_FOUND_CODE
                )
                return
            content_type = mimetypes.guess_type(file_path.name)[0]
            try:
                handle = file_path.open("rb")
            except OSError:
                self.send_error_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    "output read failed",
                    BACKEND_OUTPUT_READ_CODE,
                )
                return
            with handle:
                size = os.fstat(handle.fileno()).st_size
                self.send_response(HTTPStatus.OK)
                self.send_cors_headers()
                self.send_header(
                    "Content-Type", content_type or "application/octet-stream"
                )
                self.send_header("Content-Length", str(size))
                self.end_headers()
                while True:
                    chunk = handle.read(STREAM_CHUNK_BYTES)
                    if not chunk:
                        break
                    self.wfile.write(chunk)

        def read_body(self) -> bytes:
            content_length = parse_content_length(self.headers.get("Content-Length"))
            if content_length > config.max_body_bytes:
                # the unread body is discarded with the connection
                self.close_connection = True
                raise BackendError(
                    BACKEND_BODY_TOO_LARGE_CODE, "request body exceeds max size"
                )
            body = self.rfile.read(content_length) if content_length else b""
            if len(body) != content_length:
                raise BackendError(BACKEND_REQUEST_CODE, "request body is incomplete")
            return body

        def do_POST(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path != RENDER_ROUTE:
                self.close_connection = True
                self.send_error_response(
                    HTTPStatus.NOT_FOUND, "not found", BACKEND_NOT_FOUND_CODE
                )
                return
            authorization = self.headers.get("Authorization")
            try:
                body = self.read_body()
                service.authorize(authorization)
                payload = decode_json_body(body)
            except RenderAuthorizationError as exc:
                self.send_error_response(HTTPStatus.UNAUTHORIZED, str(exc), exc.code)
                return
            except BackendError as exc:
                self.close_connection = True
                self.send_error_response(HTTPStatus.BAD_REQUEST, str(exc), exc.code)
                return

            try:
                result = service.submit_render(
                    payload, authorization, self.request_base_url()
                )
            except RenderAuthorizationError as exc:
                self.send_error_response(HTTPStatus.UNAUTHORIZED, str(exc), exc.code)
                return
            except RenderValidationError as exc:
                self.send_error_response(HTTPStatus.BAD_REQUEST, str(exc), exc.code)
                return
            except RenderJobError as exc:
                self.send_error_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR, str(exc), exc.code, exc.detail
                )
                return
            except BundleBuildError as exc:
                self.send_error_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    RENDER_FAILED_MESSAGE,
                    exc.code,
                    str(exc),
                )
                return
            except Exception as exc:
                LOGGER.exception("%s: render request failed", BACKEND_UNHANDLED_CODE)
                self.send_error_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    RENDER_FAILED_MESSAGE,
                    BACKEND_UNHANDLED_CODE,
                    str(exc).strip() or type(exc).__name__,
                )
                return
            self.send_json(HTTPStatus.OK, result.to_payload())

    return ThreadingHTTPServer((config.host, config.port), RenderHandler)


def serve(
    config: BackendConfig,
    encoder: FrameEncoder | None = None,
    bundle_builder=None,
) -> None:
    """Run the render HTTP server."""
    service = build_service(config, encoder, bundle_builder)
    if config.prebundle:
        service.bundle_cache.warm(service.executor)
    server = build_server(config, service)
    LOGGER.info(
        "reel_render_backend.server.started address=%s:%s output_dir=%s",
        config.host,
        server.server_address[1],
        config.output_dir,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        LOGGER.info("reel_render_backend.server.shutdown: received interrupt")
    finally:
        server.server_close()
        service.executor.shutdown(wait=True)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint for the render server."""
    env = dict(os.environ)
    configure_logging(env)
    try:
        args = parse_args(list(argv) if argv is not None else sys.argv[1:])
        config = load_config(args, env)
    except ValueError as exc:
        LOGGER.error("%s: %s", BACKEND_CONFIG_CODE, exc)
        return 1
    serve(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
