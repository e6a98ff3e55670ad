"""
ui_server.py
============
Flask app for the dev server: static files with the reload hook injected
into HTML, the client script itself, and the /ws notification endpoint.
Does NOT watch files; main.py feeds change batches into the hub.
"""

import logging
import mimetypes
import posixpath
import stat
from pathlib import Path

from flask import Flask, Response, abort, request, send_file
from flask_sock import Sock
from simple_websocket import ConnectionClosed

from broadcast_hub import BroadcastHub, Connection, ConnectionClosedError
from html_injector import CLIENT_SCRIPT_PATH, InjectionError, inject_script
from path_sandbox import PathEscapeError, resolve_request_path

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent
CLIENT_SCRIPT = BASE_DIR / "injectable" / "tinyreload.js"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# platform mime tables disagree on these
_KNOWN_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".svg": "image/svg+xml",
    ".wasm": "application/wasm",
}

IDLE_POLL = 1.0   # seconds between client liveness checks


def guess_content_type(name: str) -> str:
    ext = posixpath.splitext(name)[1].lower()
    if ext in _KNOWN_TYPES:
        return _KNOWN_TYPES[ext]
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


# ── Static files ──────────────────────────────────────────────────────────────
class StaticResponder:
    """Serves files under ``root``; directories serve their index.html."""

    def __init__(self, root, injector=inject_script):
        self.root = Path(root).resolve()
        self.injector = injector

    def _resolve(self, request_path: str) -> Path:
        try:
            return resolve_request_path(self.root, request_path)
        except PathEscapeError as exc:
            logger.warning("Forbidden: %s", exc)
            abort(403)

    def serve(self, request_path: str):
        path = self._resolve(request_path)
        try:
            info = path.stat()
        except OSError:
            abort(404)

        if stat.S_ISDIR(info.st_mode):
            # resolved again so a symlinked index.html cannot leave the root
            path = self._resolve(posixpath.join(request_path, "index.html"))
            try:
                info = path.stat()
            except OSError:
                abort(404)
            if stat.S_ISDIR(info.st_mode):
                abort(404)

        content_type = guess_content_type(path.name)
        logger.debug("serving %s as %s", path, content_type)

        if content_type != "text/html":
            return send_file(path, mimetype=content_type, conditional=True)

        try:
            html = path.read_bytes()
        except OSError as exc:
            logger.error("Could not read %s: %s", path, exc)
            abort(500)
        try:
            body = self.injector(html)
        except InjectionError as exc:
            logger.error("Could not inject reload script into %s: %s", path, exc)
            abort(500)

        resp = Response(body, mimetype="text/html")
        resp.headers.update(NO_CACHE_HEADERS)
        return resp


# ── Notifications ─────────────────────────────────────────────────────────────
def accept_notifications(ws, hub: BroadcastHub, idle_poll: float = IDLE_POLL):
    """Register ``ws`` with the hub and relay broadcasts until either side
    closes. Runs on the websocket's own request thread."""
    conn = Connection(label=request.remote_addr or "")
    hub.register(conn)
    logger.info("Client connected: %r (%d total)", conn, len(hub))
    try:
        while True:
            try:
                message = conn.next_message(timeout=idle_poll)
            except ConnectionClosedError:
                break
            if message is None:
                # raises once the client has gone away
                ws.receive(timeout=0)
                continue
            ws.send(message)
    except (ConnectionClosed, OSError) as exc:
        logger.debug("Client %r went away: %s", conn, exc)
    finally:
        hub.unregister(conn)
        conn.close()


# ── App ───────────────────────────────────────────────────────────────────────
def create_app(root, hub: BroadcastHub) -> Flask:
    app = Flask(__name__, static_folder=None)
    sock = Sock(app)
    responder = StaticResponder(root)

    @app.route(CLIENT_SCRIPT_PATH)
    def client_script():
        resp = send_file(CLIENT_SCRIPT, mimetype="application/javascript", conditional=False)
        resp.headers.update(NO_CACHE_HEADERS)
        return resp

    @sock.route("/ws")
    def notifications(ws):
        accept_notifications(ws, hub)

    @app.route("/", defaults={"request_path": ""})
    @app.route("/<path:request_path>")
    def static_files(request_path):
        return responder.serve(request_path)

    app.extensions["tinyreload.hub"] = hub
    return app
