"""Server lifecycle state management."""

import enum
import errno
import socket
import threading
from typing import Optional

from httpshell.domain.correlation_id import get_logger
from httpshell.domain.errors import LifecycleError

LIFECYCLE_LOGGER = get_logger("lifecycle")


class ServerState(enum.Enum):
    CREATED = "created"
    LISTENING = "listening"
    STOP_REQUESTED = "stop_requested"
    DRAINING = "draining"
    STOPPED = "stopped"
    FORCE_CLOSED = "force_closed"
    CLOSE_FAILED = "close_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {ServerState.STOPPED, ServerState.FORCE_CLOSED, ServerState.CLOSE_FAILED}
)

_TRANSITIONS = {
    ServerState.CREATED: {ServerState.LISTENING},
    ServerState.LISTENING: {ServerState.STOP_REQUESTED},
    ServerState.STOP_REQUESTED: {ServerState.DRAINING},
    ServerState.DRAINING: TERMINAL_STATES,
}


class ShutdownOutcome(enum.Enum):
    """Result of the one shutdown attempt a server instance gets."""

    GRACEFUL_SUCCESS = "graceful_success"
    GRACEFUL_TIMEOUT_THEN_CLOSED = "graceful_timeout_then_closed"
    CLOSE_FAILED = "close_failed"

    @property
    def terminal_state(self) -> ServerState:
        return _OUTCOME_STATES[self]


_OUTCOME_STATES = {
    ShutdownOutcome.GRACEFUL_SUCCESS: ServerState.STOPPED,
    ShutdownOutcome.GRACEFUL_TIMEOUT_THEN_CLOSED: ServerState.FORCE_CLOSED,
    ShutdownOutcome.CLOSE_FAILED: ServerState.CLOSE_FAILED,
}


def _shutdown_socket(sock: socket.socket) -> Optional[OSError]:
    """Shut down both directions, returning the error unless the peer is gone."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as error:
        if error.errno in (errno.ENOTCONN, errno.EBADF):
            return None
        return error
    return None


class ServerLifecycle:
    """Owns the state machine and tracks open client connections.

    A connection is idle while waiting for its next request and active while
    a request is being handled. Draining closes idle connections immediately
    and lets active ones finish.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._state = ServerState.CREATED
        self._connections: dict[socket.socket, bool] = {}

    @property
    def state(self) -> ServerState:
        with self._cond:
            return self._state

    def transition(self, to_state: ServerState) -> ServerState:
        """Move to ``to_state``; raise LifecycleError on an illegal transition."""
        with self._cond:
            from_state = self._state
            if to_state not in _TRANSITIONS.get(from_state, ()):
                raise LifecycleError(
                    f"illegal transition {from_state.value} -> {to_state.value}"
                )
            self._state = to_state
            self._cond.notify_all()
        LIFECYCLE_LOGGER.debug(
            "State transition",
            extra={
                "event": "state_transition",
                "from_state": from_state.value,
                "to_state": to_state.value,
            },
        )
        return from_state

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        with self._cond:
            return self._state not in (ServerState.CREATED, ServerState.LISTENING)

    def is_draining(self) -> bool:
        """Check if shutdown has begun draining connections."""
        with self._cond:
            return self._state is ServerState.DRAINING or self._state.is_terminal

    def register_connection(self, sock: socket.socket) -> bool:
        """Track a new idle connection; refuse it once draining has begun."""
        with self._cond:
            if self._state is ServerState.DRAINING or self._state.is_terminal:
                return False
            self._connections[sock] = True
            return True

    def mark_active(self, sock: socket.socket) -> None:
        with self._cond:
            if sock in self._connections:
                self._connections[sock] = False

    def mark_idle(self, sock: socket.socket) -> bool:
        """Mark a connection idle; return False if it must close instead."""
        with self._cond:
            if sock not in self._connections:
                return False
            if self._state is ServerState.DRAINING or self._state.is_terminal:
                return False
            self._connections[sock] = True
            return True

    def release_connection(self, sock: socket.socket) -> None:
        with self._cond:
            self._connections.pop(sock, None)
            self._cond.notify_all()

    def has_connection(self, sock: socket.socket) -> bool:
        with self._cond:
            return sock in self._connections

    def active_connection_count(self) -> int:
        """Return the number of tracked connections, idle or not."""
        with self._cond:
            return len(self._connections)

    def begin_draining(self) -> int:
        """Enter DRAINING and close idle connections; return how many closed."""
        self.transition(ServerState.DRAINING)
        # under the lock so a connection that just read its first byte and
        # called mark_active is never taken for idle
        with self._cond:
            idle = [sock for sock, is_idle in self._connections.items() if is_idle]
            errors = [_shutdown_socket(sock) for sock in idle]
        for error in errors:
            if error is not None:
                LIFECYCLE_LOGGER.debug(
                    "Idle connection shutdown failed",
                    extra={
                        "event": "idle_close_error",
                        "error_type": type(error).__name__,
                    },
                )
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={
                "event": "draining_started",
                "active_connections": self.active_connection_count(),
            },
        )
        return len(idle)

    def wait_for_connections(self, timeout: float) -> bool:
        """Wait until no connections remain or ``timeout`` elapses."""
        with self._cond:
            drained = self._cond.wait_for(lambda: not self._connections, timeout)
            remaining = len(self._connections)
        if not drained:
            LIFECYCLE_LOGGER.warning(
                "Shutdown timeout exceeded",
                extra={"event": "drain_timeout", "active_connections": remaining},
            )
        return drained

    def force_close_connections(self) -> list[OSError]:
        """Abort every tracked connection; return the errors encountered."""
        with self._cond:
            victims = list(self._connections)
            self._connections.clear()
            self._cond.notify_all()
        errors: list[OSError] = []
        for sock in victims:
            error = _shutdown_socket(sock)
            if error is not None:
                errors.append(error)
            try:
                sock.close()
            except OSError as close_error:
                errors.append(close_error)
        LIFECYCLE_LOGGER.warning(
            "Connections force-closed",
            extra={"event": "force_close", "active_connections": len(victims)},
        )
        return errors

    def finish(self, outcome: ShutdownOutcome) -> None:
        self.transition(outcome.terminal_state)
