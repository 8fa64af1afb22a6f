"""Unit tests for the built-in handlers."""

import threading
from pathlib import Path

from httpshell.bootstrap.config import DEFAULT_INDEX_FILE
from httpshell.domain.http_types import HttpRequest
from httpshell.handlers.system_handlers import (
    format_thread_dump,
    handle_thread_dump,
    make_healthz_handler,
    make_index_handler,
)
from httpshell.lifecycle.state import ServerLifecycle, ServerState
from tests.conftest import PROJECT_ROOT


def make_request(path: str = "/") -> HttpRequest:
    """Create a GET request for ``path``."""
    return HttpRequest("GET", path, {}, b"")


def test_index_handler_serves_file_bytes(tmp_path: Path) -> None:
    """The index file is served verbatim with its content type."""
    index = tmp_path / "flower.webp"
    index.write_bytes(b"RIFF-bytes")
    response = make_index_handler(str(index), "image/webp")(make_request())
    assert response.status_code == 200
    assert response.body == b"RIFF-bytes"
    assert response.headers["Content-Type"] == "image/webp"


def test_index_handler_missing_file_is_404(tmp_path: Path) -> None:
    """A missing index file is reported as not found."""
    handler = make_index_handler(str(tmp_path / "absent.webp"), "image/webp")
    assert handler(make_request()).status_code == 404


def test_index_handler_only_answers_root(tmp_path: Path) -> None:
    """Registered as the catch-all, it still 404s other paths."""
    index = tmp_path / "flower.webp"
    index.write_bytes(b"x")
    handler = make_index_handler(str(index), "image/webp")
    assert handler(make_request("/other")).status_code == 404


def test_healthz_tracks_draining() -> None:
    """Health flips to 503 once the lifecycle drains."""
    lifecycle = ServerLifecycle()
    handler = make_healthz_handler(lifecycle)
    lifecycle.transition(ServerState.LISTENING)
    assert handler(make_request("/healthz")).status_code == 200
    lifecycle.transition(ServerState.STOP_REQUESTED)
    lifecycle.begin_draining()
    response = handler(make_request("/healthz"))
    assert response.status_code == 503
    assert response.body == b"draining"


def test_thread_dump_names_live_threads() -> None:
    """Every live thread appears with its name."""
    release = threading.Event()
    thread = threading.Thread(target=release.wait, name="dump-probe", daemon=True)
    thread.start()
    try:
        dump = format_thread_dump()
    finally:
        release.set()
    assert "[dump-probe] daemon" in dump
    assert "[MainThread]" in dump


def test_thread_dump_handler_returns_text() -> None:
    """The handler wraps the dump in a text/plain 200."""
    response = handle_thread_dump(make_request("/debug/threads"))
    assert response.status_code == 200
    assert response.headers["Content-Type"].startswith("text/plain")
    assert response.body.startswith(b"threads: ")


def test_default_index_asset_is_a_webp_image() -> None:
    """The shipped asset is served as a non-empty WebP payload."""
    index = PROJECT_ROOT / DEFAULT_INDEX_FILE
    payload = index.read_bytes()
    assert payload[:4] == b"RIFF"
    assert payload[8:12] == b"WEBP"

    response = make_index_handler(str(index), "image/webp")(make_request())
    assert response.status_code == 200
    assert response.body == payload
