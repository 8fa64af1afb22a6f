"""Server lifecycle controller: start, await stop, drain, force close."""

import socket
import threading
import time
from typing import Optional

from httpshell.bootstrap.config import ACCEPT_POLL_SECONDS, ServerConfig
from httpshell.bootstrap.socket_factory import create_server_socket
from httpshell.domain.correlation_id import get_logger
from httpshell.domain.errors import LifecycleError, UnexpectedListenerFailure
from httpshell.domain.http_types import Handler
from httpshell.lifecycle.state import (
    ServerLifecycle,
    ServerState,
    ShutdownOutcome,
)
from httpshell.lifecycle.stop_signal import StopSignal
from httpshell.pipeline.router import Router
from httpshell.pipeline.timeout import with_timeout
from httpshell.transport.accept_loop import run_accept_loop
from httpshell.transport.worker import WorkerContext

CONTROLLER_LOGGER = get_logger("lifecycle.controller")


class ServerInstance:
    """One server, from bind to a terminal shutdown state.

    The instance owns its listening socket. ``start`` returns as soon as the
    accept loop runs on its background thread; ``await_stop`` blocks the
    caller until the stop signal fires; ``shutdown`` drains for at most the
    grace period and force-closes whatever is left.
    """

    def __init__(
        self, config: ServerConfig, router: Optional[Router] = None
    ) -> None:
        self.config = config
        self.router = router if router is not None else Router()
        self.lifecycle = ServerLifecycle()
        self._listener: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._listener_failure: Optional[UnexpectedListenerFailure] = None
        self._wakeup = threading.Event()
        self._closed = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._outcome: Optional[ShutdownOutcome] = None
        self._address = config.address

    @property
    def address(self) -> str:
        """The ``host:port`` the listener is bound to."""
        return self._address

    @property
    def port(self) -> int:
        return int(self._address.rsplit(":", 1)[1])

    @property
    def state(self) -> ServerState:
        return self.lifecycle.state

    @property
    def outcome(self) -> Optional[ShutdownOutcome]:
        return self._outcome

    @property
    def listener_failure(self) -> Optional[UnexpectedListenerFailure]:
        return self._listener_failure

    def register_handler(self, pattern: str, handler: Handler) -> None:
        self.router.register_handler(pattern, handler)

    def start(self) -> None:
        """Bind the listener and start accepting on a background thread.

        Raises BindFailure when the address cannot be acquired; nothing is
        served in that case.
        """
        if self.lifecycle.state is not ServerState.CREATED:
            raise LifecycleError("server already started")
        self._listener = create_server_socket(self.config.host, self.config.port)
        bound_host, bound_port = self._listener.getsockname()[:2]
        self._address = f"{self.config.host or bound_host}:{bound_port}"
        self.lifecycle.transition(ServerState.LISTENING)

        context = WorkerContext(
            handler=with_timeout(
                self.router, self.config.request_timeout, self.config.timeout_message
            ),
            lifecycle=self.lifecycle,
            socket_timeout=self.config.socket_timeout,
        )
        self._accept_thread = threading.Thread(
            target=self._serve,
            args=(self._listener, context),
            name=f"accept {self._address}",
            daemon=True,
        )
        self._accept_thread.start()
        CONTROLLER_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "address": self._address,
                "request_timeout": self.config.request_timeout,
                "grace_seconds": self.config.shutdown_grace_seconds,
            },
        )

    def _serve(self, listener: socket.socket, context: WorkerContext) -> None:
        try:
            run_accept_loop(listener, self._address, context)
            return
        except UnexpectedListenerFailure as failure:
            self._listener_failure = failure
        except Exception as error:  # pylint: disable=broad-except
            self._listener_failure = UnexpectedListenerFailure(self._address, error)
        CONTROLLER_LOGGER.critical(
            "Listener failed unexpectedly",
            extra={
                "event": "listener_failure",
                "address": self._address,
                "error_type": type(self._listener_failure.cause).__name__,
            },
            exc_info=self._listener_failure,
        )
        self._wakeup.set()

    def await_stop(self, stop_signal: StopSignal) -> None:
        """Block until ``stop_signal`` fires.

        Raises UnexpectedListenerFailure if the accept loop dies first.
        Returns at once when the signal has already fired.
        """
        stop_signal.add_callback(self._wakeup.set)
        if stop_signal.is_set():
            self._wakeup.set()
        # timed so the main thread gets back to bytecode and runs signal handlers
        while not self._wakeup.wait(ACCEPT_POLL_SECONDS):
            pass
        if self._listener_failure is not None:
            raise self._listener_failure
        if self.lifecycle.state is ServerState.LISTENING:
            self.lifecycle.transition(ServerState.STOP_REQUESTED)
            CONTROLLER_LOGGER.info(
                "Stop requested",
                extra={"event": "stop_requested", "reason": stop_signal.reason},
            )

    def _close_listener(self, deadline: float) -> Optional[OSError]:
        listener = self._listener
        if listener is None:
            return None
        try:
            # wakes a blocked accept() on Linux; harmless elsewhere
            listener.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            listener.close()
        except OSError as error:
            return error
        if self._accept_thread is not None:
            remaining = max(0.0, deadline - time.monotonic())
            self._accept_thread.join(min(remaining, ACCEPT_POLL_SECONDS * 2))
        return None

    def shutdown(self, grace_period: Optional[float] = None) -> ShutdownOutcome:
        """Stop accepting, drain in-flight requests, force-close on deadline.

        Must be called exactly once, after ``await_stop`` returned.
        """
        if not self._shutdown_lock.acquire(blocking=False):
            raise LifecycleError("shutdown may only be called once")
        if self.lifecycle.state is not ServerState.STOP_REQUESTED:
            self._shutdown_lock.release()
            raise LifecycleError(
                f"shutdown requires a stop request, state is {self.state.value}"
            )
        grace = (
            self.config.shutdown_grace_seconds if grace_period is None else grace_period
        )
        deadline = time.monotonic() + grace
        CONTROLLER_LOGGER.info(
            "Shutting down",
            extra={
                "event": "shutdown_started",
                "grace_seconds": grace,
                "active_connections": self.lifecycle.active_connection_count(),
            },
        )
        self.lifecycle.begin_draining()
        close_error = self._close_listener(deadline)
        if close_error is not None:
            CONTROLLER_LOGGER.error(
                "Could not close listener",
                extra={
                    "event": "listener_close_failed",
                    "error_type": type(close_error).__name__,
                    "error": str(close_error),
                },
            )
            return self._finish(ShutdownOutcome.CLOSE_FAILED)

        remaining = max(0.0, deadline - time.monotonic())
        if self.lifecycle.wait_for_connections(remaining):
            return self._finish(ShutdownOutcome.GRACEFUL_SUCCESS)

        CONTROLLER_LOGGER.warning(
            "Shutdown timeout exceeded. Closing http server",
            extra={"event": "force_close", "grace_seconds": grace},
        )
        errors = self.lifecycle.force_close_connections()
        if errors:
            CONTROLLER_LOGGER.error(
                "Could not close connections",
                extra={
                    "event": "force_close_failed",
                    "error_type": type(errors[0]).__name__,
                    "error": "; ".join(str(error) for error in errors),
                },
            )
            return self._finish(ShutdownOutcome.CLOSE_FAILED)
        return self._finish(ShutdownOutcome.GRACEFUL_TIMEOUT_THEN_CLOSED)

    def _finish(self, outcome: ShutdownOutcome) -> ShutdownOutcome:
        self.lifecycle.finish(outcome)
        self._outcome = outcome
        self._closed.set()
        CONTROLLER_LOGGER.info(
            "Server shutdown complete",
            extra={
                "event": "shutdown_complete",
                "outcome": outcome.value,
                "state": outcome.terminal_state.value,
            },
        )
        return outcome

    def run(
        self, stop_signal: StopSignal, grace_period: Optional[float] = None
    ) -> ShutdownOutcome:
        """Await the stop signal, then shut down; return the outcome."""
        self.await_stop(stop_signal)
        return self.shutdown(grace_period)

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown reached a terminal state."""
        return self._closed.wait(timeout)
