"""Per-request deadline enforcement."""

import threading
import time
from typing import Optional

from httpshell.domain.correlation_id import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from httpshell.domain.http_types import Handler, HttpRequest, HttpResponse
from httpshell.domain.response_builders import (
    internal_error_response,
    timeout_response,
)

TIMEOUT_LOGGER = get_logger("pipeline.timeout")


class _PendingResponse:
    """Result slot for one request; the first of response or timeout wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._response: Optional[HttpResponse] = None
        self._timed_out = False

    def complete(self, response: HttpResponse) -> bool:
        with self._lock:
            if self._timed_out:
                return False
            self._response = response
        self._done.set()
        return True

    def wait(self, budget: float) -> Optional[HttpResponse]:
        """Return the handler's response, or None once the budget is spent."""
        self._done.wait(budget)
        with self._lock:
            if self._response is None:
                self._timed_out = True
            return self._response


def _run_handler(
    handler: Handler,
    request: HttpRequest,
    pending: _PendingResponse,
    correlation_id: Optional[str],
) -> None:
    if correlation_id is not None:
        set_correlation_id(correlation_id)
    try:
        response = handler(request)
    except Exception as error:  # pylint: disable=broad-except
        TIMEOUT_LOGGER.error(
            "Handler raised",
            extra={
                "event": "handler_error",
                "route": request.path,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
        response = internal_error_response()
    if not pending.complete(response):
        TIMEOUT_LOGGER.debug(
            "Discarded late response",
            extra={
                "event": "late_response_discarded",
                "route": request.path,
                "status_code": response.status_code,
            },
        )


def with_timeout(handler: Handler, budget: float, message: str = "") -> Handler:
    """Wrap ``handler`` so it must answer within ``budget`` seconds.

    The inner handler runs on its own daemon thread. If it has not returned
    when the budget is spent, the wrapper answers 503 with ``message`` (an
    HTML timeout page when empty) and whatever the handler returns later is
    dropped.
    """
    if budget <= 0:
        raise ValueError("budget must be positive")

    def timed_handler(request: HttpRequest) -> HttpResponse:
        pending = _PendingResponse()
        started = time.monotonic()
        worker = threading.Thread(
            target=_run_handler,
            args=(handler, request, pending, get_correlation_id()),
            name=f"handler {request.method} {request.path}",
            daemon=True,
        )
        worker.start()
        response = pending.wait(budget)
        if response is not None:
            return response
        TIMEOUT_LOGGER.warning(
            "Request exceeded its time budget",
            extra={
                "event": "request_timeout",
                "route": request.path,
                "method": request.method,
                "budget_seconds": budget,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return timeout_response(message)

    return timed_handler
