"""Unit tests for the per-request timeout wrapper."""

import logging
import threading
import time

import pytest

from httpshell.domain.http_types import HttpRequest, HttpResponse
from httpshell.domain.response_builders import TIMEOUT_PAGE, text_response
from httpshell.pipeline.timeout import with_timeout


def make_request(path: str = "/") -> HttpRequest:
    """Create a bare GET request."""
    return HttpRequest("GET", path, {}, b"")


def test_fast_handler_response_passes_through_untouched():
    """A handler that finishes in time gets its exact response delivered."""
    expected = HttpResponse(
        "HTTP/1.1 201 Created", {"Content-Type": "image/webp"}, b"\x00\x01", False
    )
    wrapped = with_timeout(lambda _request: expected, budget=1.0)
    assert wrapped(make_request()) is expected


def test_slow_handler_gets_503_after_budget():
    """An overrunning handler is answered with the timeout page."""
    release = threading.Event()

    def slow(request):
        release.wait(5)
        return text_response("late", request)

    wrapped = with_timeout(slow, budget=0.2)
    start = time.monotonic()
    response = wrapped(make_request())
    elapsed = time.monotonic() - start
    release.set()

    assert response.status_line == "HTTP/1.1 503 Service Unavailable"
    assert response.body == TIMEOUT_PAGE
    assert response.close_connection
    assert 0.15 < elapsed < 1.0


def test_late_response_is_discarded(caplog):
    """The handler's eventual response never replaces the 503."""
    caplog.set_level(logging.DEBUG, logger="http_shell")
    finished = threading.Event()

    def slow(request):
        time.sleep(0.3)
        finished.set()
        return text_response("late", request)

    wrapped = with_timeout(slow, budget=0.05)
    response = wrapped(make_request())
    assert finished.wait(2.0)
    time.sleep(0.05)

    assert response.status_code == 503
    assert b"late" not in response.body
    assert any(
        getattr(record, "event", None) == "late_response_discarded"
        for record in caplog.records
    )


def test_custom_timeout_message():
    """A configured message replaces the default HTML page."""
    def slow(request):
        time.sleep(0.5)
        return text_response("late", request)

    wrapped = with_timeout(slow, 0.05, "too slow")
    response = wrapped(make_request())
    assert response.status_code == 503
    assert response.body == b"too slow\n"


def test_handler_exception_becomes_500(caplog):
    """Errors raised by the handler turn into a 500 response."""
    caplog.set_level(logging.ERROR, logger="http_shell")

    def broken(_request):
        raise RuntimeError("boom")

    response = with_timeout(broken, budget=1.0)(make_request("/broken"))
    assert response.status_line == "HTTP/1.1 500 Internal Server Error"
    assert any(
        getattr(record, "event", None) == "handler_error" for record in caplog.records
    )


def test_concurrent_requests_have_independent_timers():
    """A slow request does not push a fast one past its budget."""

    def handler(request):
        if request.path == "/slow":
            time.sleep(1.0)
        return text_response(request.path, request)

    wrapped = with_timeout(handler, budget=0.3)
    results = {}

    def call(path):
        results[path] = wrapped(make_request(path))

    threads = [threading.Thread(target=call, args=(p,)) for p in ("/slow", "/fast")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(3)

    assert results["/fast"].status_code == 200
    assert results["/fast"].body == b"/fast"
    assert results["/slow"].status_code == 503


def test_non_positive_budget_rejected():
    """A zero budget is a configuration error."""
    with pytest.raises(ValueError):
        with_timeout(lambda r: text_response("", r), budget=0)
