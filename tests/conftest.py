"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
INDEX_PAYLOAD = b"RIFF\x1a\x00\x00\x00WEBPVP8L-test-payload"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    index_file: Path
    process: subprocess.Popen[str]
    log_file: Path


def launch_server(
    directory: Path, extra_args: list[str] | None = None
) -> Generator[ServerProcessInfo, None, None]:
    """Run main.py in a subprocess and yield once it accepts connections."""

    host = "127.0.0.1"
    port = reserve_port(host)
    index_file = directory / "flower.webp"
    index_file.write_bytes(INDEX_PAYLOAD)
    log_file = directory / "server.log"
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--host",
        host,
        "--port",
        str(port),
        "--index-file",
        str(index_file),
        "--log-destination",
        str(log_file),
    ]
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "index_file": index_file,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=15)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the HTTP server in a background process for integration tests."""

    directory = tmp_path_factory.mktemp("server")
    yield from launch_server(directory, ["--shutdown-grace-seconds", "2"])


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
