"""Pure HTTP response builders."""

from typing import Optional

from httpshell.domain.http_types import HttpRequest, HttpResponse, should_close

ERROR_HEADERS = {
    "Content-Type": "text/plain; charset=utf-8",
    "X-Content-Type-Options": "nosniff",
}

TIMEOUT_PAGE = (
    b"<html><head><title>Timeout</title></head><body><h1>Timeout</h1></body></html>"
)


def _keep_alive(request: Optional[HttpRequest]) -> bool:
    return request is not None and not should_close(request)


def bytes_response(
    payload: bytes,
    content_type: str,
    request: Optional[HttpRequest] = None,
    status_line: str = "HTTP/1.1 200 OK",
) -> HttpResponse:
    """Return a response carrying ``payload`` with the given content type."""
    return HttpResponse(
        status_line,
        {"Content-Type": content_type},
        payload,
        not _keep_alive(request),
    )


def text_response(
    message: str,
    request: Optional[HttpRequest] = None,
    status_line: str = "HTTP/1.1 200 OK",
) -> HttpResponse:
    """Return a text/plain response."""
    return bytes_response(
        message.encode(), "text/plain; charset=utf-8", request, status_line
    )


def _error_response(
    status_line: str, message: str, request: Optional[HttpRequest]
) -> HttpResponse:
    return HttpResponse(
        status_line,
        ERROR_HEADERS.copy(),
        f"{message}\n".encode(),
        not _keep_alive(request),
    )


def not_found_response(request: HttpRequest) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return _error_response("HTTP/1.1 404 Not Found", "404 page not found", request)


def bad_request_response(request: Optional[HttpRequest] = None) -> HttpResponse:
    """Produce a 400 response; without a parsed request the connection closes."""
    return _error_response("HTTP/1.1 400 Bad Request", "400 Bad Request", request)


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: set[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = _error_response(
        "HTTP/1.1 405 Method Not Allowed", "Method Not Allowed", request
    )
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def internal_error_response() -> HttpResponse:
    """Produce a 500 response that always closes the connection."""
    return _error_response(
        "HTTP/1.1 500 Internal Server Error", "Internal Server Error", None
    )


def timeout_response(message: str = "") -> HttpResponse:
    """Produce the 503 written when a handler overruns its budget."""
    if message:
        return _error_response("HTTP/1.1 503 Service Unavailable", message, None)
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        {"Content-Type": "text/html; charset=utf-8"},
        TIMEOUT_PAGE,
        True,
    )


def draining_response() -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        {"Content-Type": "text/plain; charset=utf-8"},
        b"draining",
        True,
    )


def healthz_response(
    is_draining: bool, request: Optional[HttpRequest] = None
) -> HttpResponse:
    """Produce a health check response based on server state."""
    if is_draining:
        return draining_response()
    return HttpResponse("HTTP/1.1 200 OK", {}, b"", not _keep_alive(request))
