"""
server/websocket_server.py — Flask-SocketIO snapshot bridge.
Pushes every published SessionSnapshot to the HUD over WebSocket and
forwards explicit operator actions back to the session.

Routes:
    GET /health     liveness + client count
    GET /snapshot   latest snapshot as JSON

SocketIO events:
    takeover_snapshot   (server → HUD)  snapshot dict
    operator_mode       (HUD → server)  {"mode": "MANUAL" | "AUTONOMOUS"}
    operator_release    (HUD → server)  release emergency control
    metrics_sample      (HUD → server)  external metrics payload

Use SnapshotServer.start_background() from main.py.
"""

import os
import sys
import threading
from typing import Optional

from flask import Flask, jsonify
from flask_socketio import SocketIO
from flask_cors import CORS

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
import config
from takeover_engine.data_structures import SessionSnapshot
from takeover_engine.errors import InvalidModeTransition
from core.logger import get_logger

log = get_logger(__name__)


class SnapshotServer:
    """
    Lightweight Flask-SocketIO server that bridges the takeover session
    to the HTML HUD.

    Usage:
        server = SnapshotServer(session)
        session.subscribe(server.emit_snapshot)
        server.start_background()       # non-blocking
        server.stop()
    """

    def __init__(
        self,
        session=None,
        host: str = config.SERVER_HOST,
        port: int = config.SERVER_PORT,
        cors_origins: str = config.SERVER_CORS_ALLOWED_ORIGINS,
        async_mode: str = config.SERVER_ASYNC_MODE,
    ):
        self.session = session
        self.host = host
        self.port = port
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._latest: Optional[dict] = None
        self._latest_lock = threading.Lock()

        # ── Flask + SocketIO setup ─────────────────────────────────────────
        self.app = Flask(__name__, static_folder=None)
        CORS(self.app, origins=cors_origins)

        self.socketio = SocketIO(
            self.app,
            cors_allowed_origins=cors_origins,
            async_mode=async_mode,
            logger=False,
            engineio_logger=False,
        )

        self._register_routes()
        self._register_events()

        # Track connected clients
        self._client_count: int = 0

    # ──────────────────────────────────────────────────────────────────────────
    # Flask routes
    # ──────────────────────────────────────────────────────────────────────────

    def _register_routes(self) -> None:
        @self.app.route("/health")
        def health():
            return jsonify({
                "status": "ok",
                "clients": self._client_count,
                "server": "Takeover DMS Snapshot Bridge",
                "port": self.port,
            })

        @self.app.route("/snapshot")
        def snapshot():
            data = self.latest
            if data is None and self.session is not None:
                data = self.session.snapshot().to_dict()
            if data is None:
                return jsonify({"error": "no snapshot published yet"}), 404
            return jsonify(data)

    # ──────────────────────────────────────────────────────────────────────────
    # SocketIO events
    # ──────────────────────────────────────────────────────────────────────────

    def _register_events(self) -> None:
        @self.socketio.on("connect")
        def on_connect():
            self._client_count += 1
            log.info(f"HUD connected. Clients: {self._client_count}")

        @self.socketio.on("disconnect")
        def on_disconnect(*_):
            self._client_count = max(0, self._client_count - 1)
            log.info(f"HUD disconnected. Clients: {self._client_count}")

        @self.socketio.on("operator_mode")
        def on_operator_mode(data):
            return self._operator_action(
                lambda: self.session.request_mode((data or {}).get("mode", ""))
            )

        @self.socketio.on("operator_release")
        def on_operator_release(*_):
            return self._operator_action(self.session.release_emergency_control)

        @self.socketio.on("metrics_sample")
        def on_metrics_sample(data):
            if self.session is None or not isinstance(data, dict):
                return {"ok": False, "error": "invalid payload"}
            return {"ok": self.session.submit_metrics_payload(data)}

    def _operator_action(self, action) -> dict:
        """Run an operator request; refusals are reported, not raised."""
        if self.session is None:
            return {"ok": False, "error": "no session attached"}
        try:
            action()
        except (InvalidModeTransition, ValueError) as exc:
            log.warning(f"Operator request refused: {exc}")
            return {"ok": False, "error": str(exc)}
        return {"ok": True}

    # ──────────────────────────────────────────────────────────────────────────
    # Data emission
    # ──────────────────────────────────────────────────────────────────────────

    def emit_snapshot(self, snapshot: SessionSnapshot) -> None:
        """
        Cache and broadcast a snapshot to all connected HUD clients.
        Fire-and-forget: emission errors are logged, never raised.
        """
        data = snapshot.to_dict()
        with self._latest_lock:
            self._latest = data
        if not self._running:
            return
        try:
            self.socketio.emit(config.EMIT_EVENT_NAME, data)
        except Exception as exc:
            log.debug(f"Emit error: {exc}")

    @property
    def latest(self) -> Optional[dict]:
        with self._latest_lock:
            return self._latest

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def start_background(self) -> None:
        """
        Start the SocketIO server in a background daemon thread.
        Returns immediately.
        """
        if self._running:
            log.warning("Server already running.")
            return

        self._running = True
        self._thread = threading.Thread(
            target=self._run_server,
            daemon=True,
            name="takeover-ws-server",
        )
        self._thread.start()
        log.info(
            f"Server started at http://{self.host}:{self.port}  "
            f"(health: http://localhost:{self.port}/health)"
        )

    def _run_server(self) -> None:
        """Internal: run Flask-SocketIO (blocking, called in daemon thread)."""
        try:
            self.socketio.run(
                self.app,
                host=self.host,
                port=self.port,
                use_reloader=False,
                log_output=False,
                allow_unsafe_werkzeug=True,
            )
        except OSError as exc:
            log.error(f"Snapshot server failed: {exc}")
            self._running = False

    def stop(self) -> None:
        """Signal the server to stop (best-effort for daemon thread)."""
        self._running = False
        log.info("Server stopped.")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def client_count(self) -> int:
        return self._client_count
