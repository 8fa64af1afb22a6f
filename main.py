"""HTTP server shell with a per-request budget and graceful shutdown."""

import argparse
import sys
from typing import Optional

from httpshell.bootstrap.config import ServerConfig, parse_cli_args
from httpshell.bootstrap.logging_setup import configure_logging
from httpshell.domain.correlation_id import get_logger
from httpshell.domain.errors import BindFailure, UnexpectedListenerFailure
from httpshell.handlers.system_handlers import (
    handle_thread_dump,
    make_healthz_handler,
    make_index_handler,
)
from httpshell.lifecycle.controller import ServerInstance
from httpshell.lifecycle.stop_signal import (
    StopSignal,
    fire_after,
    install_signal_handlers,
)

SERVER_LOGGER = get_logger("server")


def build_server(args: argparse.Namespace) -> ServerInstance:
    """Create the server instance and register the built-in routes."""
    server = ServerInstance(ServerConfig.from_args(args))
    server.register_handler(
        "/", make_index_handler(args.index_file, args.index_content_type)
    )
    server.register_handler("/healthz", make_healthz_handler(server.lifecycle))
    if args.debug_endpoints:
        server.register_handler("/debug/threads", handle_thread_dump)
    return server


def main(argv: Optional[list[str]] = None) -> int:
    """Serve until a stop signal arrives and shutdown reaches a terminal state."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination, args.log_format == "json")

    stop_signal = StopSignal()
    install_signal_handlers(stop_signal)

    server = build_server(args)
    SERVER_LOGGER.info(
        "Starting HTTP server",
        extra={
            "host": args.host,
            "port": args.port,
            "request_timeout": args.request_timeout,
            "grace_seconds": args.shutdown_grace_seconds,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
        },
    )
    try:
        server.start()
    except BindFailure as error:
        SERVER_LOGGER.critical(
            "Could not start http server",
            extra={"event": "startup_failed", "error": str(error)},
        )
        return 1

    if args.stop_after > 0:
        fire_after(stop_signal, args.stop_after)

    try:
        outcome = server.run(stop_signal)
    except UnexpectedListenerFailure as error:
        SERVER_LOGGER.critical(
            "Http server stopped serving",
            extra={"event": "listener_failure", "error": str(error)},
        )
        return 1

    server.wait_closed()
    SERVER_LOGGER.info(
        "Process exiting", extra={"event": "process_exit", "outcome": outcome.value}
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
