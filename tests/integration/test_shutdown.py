"""Integration tests for signal-driven graceful shutdown."""

# pylint: disable=redefined-outer-name

import json
import signal
import socket
import subprocess
import sys
import time

import pytest

from tests.conftest import PROJECT_ROOT, SERVER_ENTRYPOINT, launch_server
from tests.utils.http import (
    read_http_response,
    reserve_port,
    send_request,
    send_signal_to_process,
    wait_for_healthz_status,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def server_process_info(tmp_path):
    """Start a server process with a short grace period and yield its details."""
    yield from launch_server(tmp_path, ["--shutdown-grace-seconds", "2"])


def _log_events(log_file):
    events = []
    for line in log_file.read_text().splitlines():
        record = json.loads(line)
        if "event" in record:
            events.append(record)
    return events


def test_sigterm_shuts_down_with_graceful_success(server_process_info):
    """SIGTERM with no traffic exits 0 well inside the grace period."""
    process = server_process_info["process"]
    assert wait_for_healthz_status(
        server_process_info["host"], server_process_info["port"], 200, timeout=2.0
    )
    start = time.monotonic()
    send_signal_to_process(process.pid, signal.SIGTERM)
    process.wait(timeout=5.0)
    assert time.monotonic() - start < 2.0
    assert process.returncode == 0

    events = _log_events(server_process_info["log_file"])
    complete = [e for e in events if e["event"] == "shutdown_complete"]
    assert len(complete) == 1
    assert complete[0]["outcome"] == "graceful_success"


def test_sigint_triggers_graceful_shutdown(server_process_info):
    """SIGINT fires the same stop signal as SIGTERM."""
    process = server_process_info["process"]
    send_signal_to_process(process.pid, signal.SIGINT)
    process.wait(timeout=5.0)
    assert process.returncode == 0


@pytest.mark.parametrize("attempt", range(6))
@pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
def test_signal_stops_server_with_open_connection(tmp_path, sig, attempt):
    """The stop signal is honoured even when worker threads are running.

    Repeated because the kernel may deliver the signal to any thread.
    """
    del attempt
    gen = launch_server(tmp_path, ["--shutdown-grace-seconds", "2"])
    info = next(gen)
    try:
        with socket.create_connection((info["host"], info["port"]), timeout=3.0):
            time.sleep(0.05)
            send_signal_to_process(info["process"].pid, sig)
            info["process"].wait(timeout=5.0)
        assert info["process"].returncode == 0
        events = _log_events(info["log_file"])
        assert any(e["event"] == "signal_received" for e in events)
    finally:
        gen.close()


def test_new_connections_refused_after_stop(server_process_info):
    """Once stopped the listener is closed and connects are refused."""
    host = server_process_info["host"]
    port = server_process_info["port"]
    process = server_process_info["process"]
    send_signal_to_process(process.pid, signal.SIGTERM)
    process.wait(timeout=5.0)
    with pytest.raises(OSError):
        socket.create_connection((host, port), timeout=1.0)


def test_idle_keep_alive_connection_does_not_delay_exit(server_process_info):
    """An idle keep-alive connection is closed at once during draining."""
    host = server_process_info["host"]
    port = server_process_info["port"]
    process = server_process_info["process"]
    with socket.create_connection((host, port), timeout=3.0) as sock:
        send_request(sock, "/healthz")
        assert read_http_response(sock).status_code == 200
        start = time.monotonic()
        send_signal_to_process(process.pid, signal.SIGTERM)
        process.wait(timeout=5.0)
        assert time.monotonic() - start < 1.5
        assert sock.recv(4096) == b""
    assert process.returncode == 0


def test_stop_after_fires_stop_signal(tmp_path):
    """--stop-after replaces an OS signal as the stop trigger."""
    gen = launch_server(tmp_path, ["--stop-after", "0.5"])
    info = next(gen)
    info["process"].wait(timeout=5.0)
    assert info["process"].returncode == 0
    events = _log_events(info["log_file"])
    assert any(
        e["event"] == "stop_requested" and e.get("reason") == "timer" for e in events
    )
    gen.close()


def test_bind_failure_exits_with_error(tmp_path):
    """A port already taken makes the process exit 1 without serving."""
    host = "127.0.0.1"
    port = reserve_port(host)
    with socket.create_server((host, port)):
        result = subprocess.run(
            [
                sys.executable,
                str(SERVER_ENTRYPOINT),
                "--host",
                host,
                "--port",
                str(port),
                "--log-destination",
                str(tmp_path / "server.log"),
            ],
            cwd=PROJECT_ROOT,
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    assert result.returncode == 1
    events = _log_events(tmp_path / "server.log")
    assert any(e["event"] == "bind_failed" for e in events)
