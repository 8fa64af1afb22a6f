"""Single-fire stop notification and the triggers that fire it."""

import signal
import threading
from typing import Callable, Iterable, Optional

from httpshell.domain.correlation_id import get_logger

SIGNAL_LOGGER = get_logger("lifecycle.signal")

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class StopSignal:
    """A notification that fires at most once.

    Waiting on an already-fired signal returns immediately, so any number of
    waiters (or a second wait by the same caller) observe the one firing.
    """

    def __init__(self) -> None:
        # reentrant: fire() may run in a signal handler on the waiting thread
        self._lock = threading.RLock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._reason: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()

    def fire(self, reason: str = "requested") -> bool:
        """Fire the signal; return False when it had already fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        SIGNAL_LOGGER.info(
            "Stop signal fired", extra={"event": "stop_fired", "reason": reason}
        )
        for callback in callbacks:
            callback()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until fired; return False if ``timeout`` elapsed first."""
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the signal fires, immediately if it already has."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()


def install_signal_handlers(
    stop_signal: StopSignal, signals: Iterable[int] = DEFAULT_SIGNALS
) -> None:
    """Fire ``stop_signal`` on the given OS signals. Main thread only."""

    def _handler(signum: int, _frame) -> None:
        name = signal.Signals(signum).name
        SIGNAL_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": name},
        )
        stop_signal.fire(reason=name)

    for signum in signals:
        signal.signal(signum, _handler)


def fire_after(stop_signal: StopSignal, seconds: float) -> threading.Timer:
    """Schedule ``stop_signal`` to fire after ``seconds`` on a daemon timer."""
    timer = threading.Timer(seconds, stop_signal.fire, kwargs={"reason": "timer"})
    timer.daemon = True
    timer.start()
    return timer
