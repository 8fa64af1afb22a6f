"""Main connection acceptance loop."""

import errno
import logging
import socket
import threading
import time

from httpshell.domain.correlation_id import get_logger
from httpshell.domain.errors import UnexpectedListenerFailure
from httpshell.domain.response_builders import draining_response
from httpshell.pipeline.io import send_response
from httpshell.transport.worker import WorkerContext, handle_client

ACCEPT_LOGGER = get_logger("transport.accept")

TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {
        errno.ECONNABORTED,
        errno.EINTR,
        errno.EAGAIN,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
    }
)
MIN_BACKOFF_SECONDS = 0.005
MAX_BACKOFF_SECONDS = 1.0


def _next_backoff(current: float) -> float:
    if current <= 0:
        return MIN_BACKOFF_SECONDS
    return min(current * 2, MAX_BACKOFF_SECONDS)


def _reject_while_stopping(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response())
    except OSError:
        pass
    finally:
        client_socket.close()


def _spawn_worker(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"conn {client_address[0]}:{client_address[1]}",
        daemon=True,
    )
    thread.start()


def run_accept_loop(
    server_socket: socket.socket, address: str, context: WorkerContext
) -> None:
    """Accept connections until the lifecycle stops, one thread per client.

    Returns normally once shutdown has been requested. Any other accept
    failure that is not transient raises UnexpectedListenerFailure.
    """
    lifecycle = context.lifecycle
    backoff = 0.0
    while True:
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            if lifecycle.should_stop():
                break
            continue
        except OSError as error:
            if lifecycle.should_stop():
                break
            if error.errno in TRANSIENT_ACCEPT_ERRNOS:
                backoff = _next_backoff(backoff)
                ACCEPT_LOGGER.error(
                    "Socket accept failed; retrying",
                    extra={
                        "event": "accept_error",
                        "error_type": type(error).__name__,
                        "errno": error.errno,
                        "backoff_seconds": backoff,
                    },
                )
                time.sleep(backoff)
                continue
            raise UnexpectedListenerFailure(address, error) from error

        backoff = 0.0
        if lifecycle.should_stop():
            _reject_while_stopping(client_socket)
            continue
        _spawn_worker(client_socket, client_address, context)

    ACCEPT_LOGGER.info(
        "Accept loop stopped", extra={"event": "accept_stopped", "address": address}
    )
