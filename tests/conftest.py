from pathlib import Path

import pytest

from broadcast_hub import BroadcastHub
from ui_server import create_app

INDEX_HTML = b"<html><head><title>t</title></head><body><p>hi</p></body></html>"
STYLE_CSS = b"body { color: red; }\n"


class FakeConnection:
    """Hub member that records payloads, or fails every send."""

    def __init__(self, fail=False, on_send=None):
        self.fail = fail
        self.on_send = on_send
        self.received = []
        self.closed = False

    def send(self, payload):
        if self.on_send is not None:
            self.on_send()
        if self.fail:
            raise ConnectionError("broken pipe")
        self.received.append(payload)

    def close(self):
        self.closed = True


@pytest.fixture
def site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "style.css").write_bytes(STYLE_CSS)
    (root / "data.xyzunknown").write_bytes(b"\x00\x01\x02")
    (root / "empty").mkdir()
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_bytes(b"<html><body>docs</body></html>")
    return root.resolve()


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def app(site: Path, hub: BroadcastHub):
    app = create_app(site, hub)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
