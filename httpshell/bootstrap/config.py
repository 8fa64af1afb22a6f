"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value is not None else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


DEFAULT_HOST = os.getenv("HTTP_SHELL_HOST", "0.0.0.0")
DEFAULT_PORT = _env_int("HTTP_SHELL_PORT", 8080)
DEFAULT_REQUEST_TIMEOUT = _env_float("HTTP_SHELL_REQUEST_TIMEOUT", 3.0)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_float("HTTP_SHELL_SHUTDOWN_GRACE_SECONDS", 10.0)
DEFAULT_SOCKET_TIMEOUT = _env_int("HTTP_SHELL_SOCKET_TIMEOUT", 60)
DEFAULT_STOP_AFTER = _env_float("HTTP_SHELL_STOP_AFTER", 0.0)
DEFAULT_INDEX_FILE = os.getenv("HTTP_SHELL_INDEX_FILE", "resources/flower.webp")
DEFAULT_INDEX_CONTENT_TYPE = os.getenv("HTTP_SHELL_INDEX_CONTENT_TYPE", "image/webp")
DEFAULT_DEBUG_ENDPOINTS = _env_bool("HTTP_SHELL_DEBUG_ENDPOINTS", True)
DEFAULT_TIMEOUT_MESSAGE = os.getenv("HTTP_SHELL_TIMEOUT_MESSAGE", "")

HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = _env_int("HTTP_SHELL_MAX_HEADER_BYTES", 1 << 20)
MAX_BODY_BYTES = _env_int("HTTP_SHELL_MAX_BODY_BYTES", 5 * 1024 * 1024)
ALLOWED_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}
ACCEPT_POLL_SECONDS = 0.5


@dataclass
class ServerConfig:
    """Listener address, request budget and shutdown settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    socket_timeout: Optional[float] = DEFAULT_SOCKET_TIMEOUT
    timeout_message: str = DEFAULT_TIMEOUT_MESSAGE

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ServerConfig":
        return cls(
            host=args.host,
            port=args.port,
            request_timeout=args.request_timeout,
            shutdown_grace_seconds=args.shutdown_grace_seconds,
            socket_timeout=args.socket_timeout or None,
            timeout_message=args.timeout_message,
        )


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {value}")
    return number


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(description="HTTP server shell")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument(
        "--request-timeout",
        type=_positive_float,
        default=DEFAULT_REQUEST_TIMEOUT,
        help="Per-request handling budget in seconds",
    )
    parser.add_argument(
        "--timeout-message",
        default=DEFAULT_TIMEOUT_MESSAGE,
        help="503 body for requests over budget (empty for the HTML page)",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=_positive_float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for draining in-flight requests",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle socket timeout in seconds (0 to disable)",
    )
    parser.add_argument(
        "--stop-after",
        type=float,
        default=DEFAULT_STOP_AFTER,
        help="Fire the stop signal after this many seconds (0 to disable)",
    )
    parser.add_argument(
        "--index-file",
        default=DEFAULT_INDEX_FILE,
        help="File served at /",
    )
    parser.add_argument(
        "--index-content-type",
        default=DEFAULT_INDEX_CONTENT_TYPE,
        help="Content-Type header sent with the index file",
    )
    parser.add_argument(
        "--debug-endpoints",
        action=argparse.BooleanOptionalAction,
        default=DEFAULT_DEBUG_ENDPOINTS,
        help="Expose /debug/threads",
    )
    default_log_level = os.getenv("HTTP_SHELL_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("HTTP_SHELL_LOG_DESTINATION", "stdout")
    default_log_format = os.getenv("HTTP_SHELL_LOG_FORMAT", "json").lower()
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=default_log_format,
        choices=["json", "text"],
        type=str.lower,
    )
    return parser.parse_args(argv)
