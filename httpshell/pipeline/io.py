"""HTTP input/output operations."""

import socket
import urllib.parse
from email.utils import formatdate
from typing import Callable, Optional, Tuple

from httpshell.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES, MAX_HEADER_BYTES
from httpshell.domain.correlation_id import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from httpshell.domain.http_types import HttpRequest, HttpResponse

IO_LOGGER = get_logger("io")


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if not line:
            continue
        name, separator, value = line.partition(":")
        if not separator or not name.strip():
            raise ValueError("Malformed header line")
        parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Parse method, unquoted path, query string and protocol version."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/1."):
        raise ValueError("Unsupported protocol version")
    if not method.isalpha() or not method.isupper():
        raise ValueError("Invalid method")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path) or "/"
    return method, path, parsed_target.query, version


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise ValueError("Request body too large")
    return content_length


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    on_first_byte: Optional[Callable[[], None]] = None,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    Returns ``(None, b"")`` when the peer closes the connection first and
    raises ValueError for requests that cannot be parsed. ``on_first_byte``
    runs once, as soon as any part of the request is buffered.
    """
    if buffer and on_first_byte is not None:
        on_first_byte()
        on_first_byte = None
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("Request header too large")
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        if on_first_byte is not None:
            on_first_byte()
            on_first_byte = None
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)

    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    return HttpRequest(method, path, headers, body, version, query), leftover


def serialize_response(response: HttpResponse, include_body: bool = True) -> bytes:
    """Render the status line, headers and body of ``response``."""
    headers = {"Date": formatdate(usegmt=True), **response.headers}

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER
    if not include_body:
        return header_block
    return header_block + response.body


def send_response(
    client_socket: socket.socket, response: HttpResponse, include_body: bool = True
) -> None:
    """Serialize and send the HTTP response over the socket."""
    client_socket.sendall(serialize_response(response, include_body))
    IO_LOGGER.debug(
        "Sent response",
        extra={"status_code": response.status_code, "event": "response_sent"},
    )
