"""Listening socket creation."""

import socket

from httpshell.bootstrap.config import ACCEPT_POLL_SECONDS
from httpshell.domain.correlation_id import get_logger
from httpshell.domain.errors import BindFailure

SOCKET_LOGGER = get_logger("socket")


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port``, raising BindFailure on error."""
    try:
        server_socket = socket.create_server((host, port), backlog=128)
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listener",
            extra={
                "event": "bind_failed",
                "host": host,
                "port": port,
                "error_type": type(error).__name__,
                "errno": error.errno,
            },
        )
        raise BindFailure(f"{host}:{port}", error) from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
