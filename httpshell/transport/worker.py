"""Worker thread logic for handling individual client connections."""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

from httpshell.bootstrap.config import ALLOWED_METHODS
from httpshell.domain.correlation_id import (
    clear_correlation_id,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from httpshell.domain.http_types import Handler, HttpRequest, HttpResponse
from httpshell.domain.response_builders import (
    bad_request_response,
    draining_response,
    method_not_allowed_response,
)
from httpshell.lifecycle.state import ServerLifecycle
from httpshell.pipeline.io import receive_request, send_response

WORKER_LOGGER = get_logger("transport.worker")


@dataclass
class WorkerContext:
    """Dependencies shared across connection threads."""

    handler: Handler
    lifecycle: ServerLifecycle
    socket_timeout: Optional[float] = None


def _read_request(
    client_socket: socket.socket,
    buffer: bytes,
    client_addr_str: str,
    lifecycle: ServerLifecycle,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read one request; the flag tells the caller to stop serving the socket."""
    try:
        request, buffer = receive_request(
            client_socket, buffer, lambda: lifecycle.mark_active(client_socket)
        )
    except ValueError as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={
                "event": "malformed_request",
                "client": client_addr_str,
                "error": str(error),
            },
        )
        send_response(client_socket, bad_request_response())
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, b"", True
    return request, buffer, False


def _dispatch(request: HttpRequest, context: WorkerContext) -> HttpResponse:
    if request.method not in ALLOWED_METHODS:
        return method_not_allowed_response(request, ALLOWED_METHODS)
    return context.handler(request)


def _serve_connection(
    client_socket: socket.socket, client_addr_str: str, context: WorkerContext
) -> None:
    lifecycle = context.lifecycle
    buffer = b""
    while True:
        set_correlation_id(generate_correlation_id())
        request, buffer, should_terminate = _read_request(
            client_socket, buffer, client_addr_str, lifecycle
        )
        if should_terminate or request is None:
            break

        started = time.monotonic()
        response = _dispatch(request, context)
        if lifecycle.is_draining():
            response.close_connection = True
        send_response(client_socket, response, include_body=request.method != "HEAD")

        WORKER_LOGGER.info(
            "Request complete",
            extra={
                "event": "request_complete",
                "client": client_addr_str,
                "method": request.method,
                "route": request.path,
                "status_code": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        clear_correlation_id()

        if response.close_connection or not lifecycle.mark_idle(client_socket):
            break


def _close_socket(client_socket: socket.socket) -> None:
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    lifecycle = context.lifecycle
    client_addr_str = f"{client_address[0]}:{client_address[1]}"

    if not lifecycle.register_connection(client_socket):
        try:
            send_response(client_socket, draining_response())
        except OSError:
            WORKER_LOGGER.debug(
                "Could not send draining response",
                extra={"event": "draining_send_failed", "client": client_addr_str},
            )
        _close_socket(client_socket)
        return

    try:
        client_socket.settimeout(context.socket_timeout)
        _serve_connection(client_socket, client_addr_str, context)
    except TimeoutError:
        WORKER_LOGGER.debug(
            "Idle connection timed out",
            extra={"event": "idle_timeout", "client": client_addr_str},
        )
    except (ConnectionError, OSError, UnicodeDecodeError) as error:
        level = logging.DEBUG if lifecycle.should_stop() else logging.ERROR
        WORKER_LOGGER.log(
            level,
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _close_socket(client_socket)
        lifecycle.release_connection(client_socket)
        clear_correlation_id()
        WORKER_LOGGER.debug(
            "Socket closed", extra={"event": "socket_closed", "client": client_addr_str}
        )
