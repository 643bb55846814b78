"""Development server: static files from the public root plus live reload.

Browsers subscribe to ``/__reload__/events`` (server-sent events) through a
small script injected into every HTML page; `DevServer.reload()` pushes one
``reload`` event to each connected client.
"""

from __future__ import annotations

import os
import queue
import threading
from pathlib import Path

from flask import Flask, Response, abort, request, send_file, stream_with_context
from flask_cors import CORS
from werkzeug.security import safe_join
from werkzeug.serving import make_server

from .logging import get_logger


logger = get_logger("server")

RELOAD_PREFIX = "/__reload__"
HEARTBEAT_SECONDS = 15.0

CLIENT_JS = """(function () {
  if (!window.EventSource) { return; }
  var source = new EventSource("%s/events");
  source.addEventListener("reload", function () { window.location.reload(); });
})();
""" % RELOAD_PREFIX

CLIENT_TAG = f'<script src="{RELOAD_PREFIX}/client.js"></script>'


class ReloadBroadcaster:
    """Fan-out of reload signals to per-client queues."""

    def __init__(self) -> None:
        self._clients: set[queue.Queue] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._clients.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._clients.discard(q)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def publish(self) -> int:
        with self._lock:
            clients = list(self._clients)
        for q in clients:
            q.put("reload")
        return len(clients)


def inject_client(html: str) -> str:
    idx = html.lower().rfind("</body>")
    if idx == -1:
        return html + CLIENT_TAG
    return html[:idx] + CLIENT_TAG + html[idx:]


def create_app(root: Path, broadcaster: ReloadBroadcaster, heartbeat: float = HEARTBEAT_SECONDS) -> Flask:
    app = Flask(__name__, static_folder=None)
    # Pages served from another origin can still subscribe to reloads
    CORS(app, resources={rf"{RELOAD_PREFIX}/*": {"origins": "*"}})
    root = Path(root).absolute()

    @app.route(f"{RELOAD_PREFIX}/client.js")
    def reload_client():
        return Response(CLIENT_JS, mimetype="application/javascript")

    @app.route(f"{RELOAD_PREFIX}/events")
    def reload_events():
        q = broadcaster.subscribe()

        def stream():
            try:
                yield "retry: 1000\n\n"
                while True:
                    try:
                        event = q.get(timeout=heartbeat)
                    except queue.Empty:
                        yield ": ping\n\n"
                        continue
                    yield f"event: {event}\ndata: {{}}\n\n"
            finally:
                broadcaster.unsubscribe(q)

        return Response(
            stream_with_context(stream()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def static_file(path: str):
        joined = safe_join(str(root), path) if path else str(root)
        if joined is None:
            abort(404)
        target = Path(joined)
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            abort(404)
        if target.suffix.lower() in (".html", ".htm"):
            html = target.read_text(encoding="utf-8", errors="replace")
            resp = Response(inject_client(html), mimetype="text/html")
            resp.headers["Cache-Control"] = "no-cache"
            return resp
        return send_file(target, max_age=0)

    @app.after_request
    def log_request(resp):
        if not request.path.startswith(RELOAD_PREFIX):
            logger.debug("%s %s %s", request.method, request.path, resp.status_code)
        return resp

    return app


class DevServer:
    """Threaded werkzeug server around `create_app`; `reload()` is thread-safe."""

    def __init__(self, root: Path, host: str = "0.0.0.0", port: int = 8080) -> None:
        self.root = Path(root)
        self.host = host
        self.port = port
        self.broadcaster = ReloadBroadcaster()
        self.app = create_app(self.root, self.broadcaster)
        self._server = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        os.makedirs(self.root, exist_ok=True)
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="sitebuild-devserver", daemon=True
        )
        self._thread.start()
        logger.info("Serving %s at http://%s:%d", self.root, self.host, self.port)

    def reload(self) -> int:
        n = self.broadcaster.publish()
        logger.info("Reload signal sent to %d client(s)", n)
        return n

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
