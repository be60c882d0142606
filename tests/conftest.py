"""Shared fixtures for tailcast tests."""
import threading
import time
from pathlib import Path

import pytest

from tailcast.broadcaster import Broadcaster
from tailcast.watcher import TailWatcher
from tailcast.web_server import make_server


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    path = tmp_path / "app.log"
    path.write_text("Line 1\nLine 2\nLine 3\n")
    return path


@pytest.fixture
def watcher(log_file: Path) -> TailWatcher:
    return TailWatcher(str(log_file))


@pytest.fixture
def hub() -> Broadcaster:
    return Broadcaster(capacity=10)


@pytest.fixture
def http_server(hub: Broadcaster, watcher: TailWatcher):
    server = make_server(hub, watcher, "127.0.0.1", 0, keepalive=0.2)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server
    hub.close()
    server.shutdown()
    server.server_close()


@pytest.fixture
def base_url(http_server) -> str:
    host, port = http_server.server_address[:2]
    return f"http://{host}:{port}"
