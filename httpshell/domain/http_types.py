"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import Callable


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    version: str = "HTTP/1.1"
    query: str = ""


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    close_connection: bool = False

    @property
    def status_code(self) -> int:
        return int(self.status_line.split(" ", 2)[1])


Handler = Callable[[HttpRequest], HttpResponse]


def should_close(request: HttpRequest) -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = request.headers.get("connection", "").lower()
    if request.version == "HTTP/1.0":
        return connection != "keep-alive"
    return connection == "close"
