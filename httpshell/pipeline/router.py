"""Request routing table."""

import logging
import threading
from typing import Optional

from httpshell.domain.correlation_id import get_logger
from httpshell.domain.http_types import Handler, HttpRequest, HttpResponse
from httpshell.domain.response_builders import not_found_response

ROUTER_LOGGER = get_logger("pipeline.router")


class Router:
    """Maps path patterns to handlers.

    A pattern ending in ``/`` matches every path below it; any other pattern
    matches only itself. The longest matching pattern wins, so ``/`` acts as
    the catch-all.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._exact: dict[str, Handler] = {}
        self._subtrees: list[tuple[str, Handler]] = []

    def register_handler(self, pattern: str, handler: Handler) -> None:
        """Attach ``handler`` to ``pattern``; duplicates are rejected."""
        if not pattern or not pattern.startswith("/"):
            raise ValueError(f"invalid pattern {pattern!r}")
        if not callable(handler):
            raise TypeError(f"handler for {pattern!r} is not callable")
        with self._lock:
            if pattern in self._exact or any(p == pattern for p, _ in self._subtrees):
                raise ValueError(f"multiple registrations for {pattern}")
            if pattern.endswith("/"):
                self._subtrees.append((pattern, handler))
                self._subtrees.sort(key=lambda entry: len(entry[0]), reverse=True)
            else:
                self._exact[pattern] = handler
        ROUTER_LOGGER.debug(
            "Handler registered", extra={"event": "route_registered", "route": pattern}
        )

    def patterns(self) -> list[str]:
        with self._lock:
            return sorted([*self._exact, *(p for p, _ in self._subtrees)])

    def match(self, path: str) -> Optional[tuple[str, Handler]]:
        """Return the winning ``(pattern, handler)`` for ``path``, if any."""
        with self._lock:
            handler = self._exact.get(path)
            if handler is not None:
                return path, handler
            for pattern, subtree_handler in self._subtrees:
                if path.startswith(pattern):
                    return pattern, subtree_handler
        return None

    def __call__(self, request: HttpRequest) -> HttpResponse:
        matched = self.match(request.path)
        if matched is None:
            ROUTER_LOGGER.info(
                "No matching route found",
                extra={
                    "event": "route_not_found",
                    "route": request.path,
                    "method": request.method,
                },
            )
            return not_found_response(request)
        pattern, handler = matched
        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "Route matched", extra={"event": "route_matched", "route": pattern}
            )
        return handler(request)
