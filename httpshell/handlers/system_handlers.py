"""Built-in handlers: index asset, health check and thread dump."""

import logging
import sys
import threading
import traceback
from pathlib import Path

from httpshell.domain.correlation_id import get_logger
from httpshell.domain.http_types import Handler, HttpRequest, HttpResponse
from httpshell.domain.response_builders import (
    bytes_response,
    healthz_response,
    not_found_response,
    text_response,
)
from httpshell.lifecycle.state import ServerLifecycle

SYSTEM_LOGGER = get_logger("handlers.system")


def make_index_handler(index_file: str, content_type: str) -> Handler:
    """Serve the bytes of ``index_file`` at ``/`` and 404 below it.

    The file is read on every request so it can be replaced while serving.
    """
    path = Path(index_file)

    def handle_index(request: HttpRequest) -> HttpResponse:
        if request.path != "/":
            return not_found_response(request)
        if SYSTEM_LOGGER.logger.isEnabledFor(logging.DEBUG):
            SYSTEM_LOGGER.debug(
                "Index requested", extra={"event": "index_request", "route": "/"}
            )
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            SYSTEM_LOGGER.warning(
                "Index file missing",
                extra={"event": "index_missing", "route": path.as_posix()},
            )
            return not_found_response(request)
        return bytes_response(payload, content_type, request)

    return handle_index


def make_healthz_handler(lifecycle: ServerLifecycle) -> Handler:
    """Answer 200 while serving and 503 once draining began."""

    def handle_healthz(request: HttpRequest) -> HttpResponse:
        is_draining = lifecycle.is_draining()
        SYSTEM_LOGGER.info(
            "Health check performed",
            extra={"event": "healthz_check", "state": lifecycle.state.value},
        )
        return healthz_response(is_draining, request)

    return handle_healthz


def format_thread_dump() -> str:
    threads = {thread.ident: thread for thread in threading.enumerate()}
    frames = sys._current_frames()  # pylint: disable=protected-access
    sections = []
    for ident, frame in sorted(frames.items()):
        thread = threads.get(ident)
        name = thread.name if thread is not None else "<unknown>"
        daemon = " daemon" if thread is not None and thread.daemon else ""
        stack = "".join(traceback.format_stack(frame))
        sections.append(f"thread {ident} [{name}]{daemon}:\n{stack}")
    header = f"threads: {len(sections)}\n\n"
    return header + "\n".join(sections)


def handle_thread_dump(request: HttpRequest) -> HttpResponse:
    """Plain-text stack dump of every live thread."""
    SYSTEM_LOGGER.info(
        "Thread dump requested", extra={"event": "thread_dump", "route": request.path}
    )
    return text_response(format_thread_dump(), request)
