"""Pytest configuration and fixtures

Provides a local stub target service (threaded ``http.server``), a logger
that records calls instead of printing, and helpers for building small run
configs.
"""

from __future__ import annotations

import http.server
import json
import sys
import threading
import time
from pathlib import Path
from typing import Any

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loadgen.logger import Logger  # noqa: E402


# ============================================================================
# LOGGING
# ============================================================================


class RecordingLogger(Logger):
    """Logger that keeps (level, message, fields) tuples for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def _add(self, level: str, message: str, kwargs: dict[str, Any]) -> None:
        with self._lock:
            self.records.append((level, message, kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._add("debug", message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._add("info", message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._add("warning", message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._add("error", message, kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._add("critical", message, kwargs)

    def events(self, level: str | None = None) -> list[str]:
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


# ============================================================================
# STUB TARGET SERVICE
# ============================================================================


class StubTargetServer:
    """Minimal target service for end-to-end runs.

    Routes:
      /health      -> ``health_status`` (200 by default)
      /ready       -> 200 {"ready": true}
      /v1/indexes  -> 200 ["claims"]
      /fail        -> 500
      /slow        -> 200 after ``slow_seconds``
    """

    def __init__(self) -> None:
        self.health_status = 200
        self.slow_seconds = 0.05
        self.hits: dict[str, int] = {}
        self._hits_lock = threading.Lock()
        self._server: http.server.ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self.port = 0

    def start(self) -> None:
        stub = self

        class Handler(http.server.BaseHTTPRequestHandler):
            def _send(self, status: int, body: Any) -> None:
                payload = json.dumps(body).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def _route(self) -> None:
                path = self.path.split("?", 1)[0]
                with stub._hits_lock:
                    stub.hits[path] = stub.hits.get(path, 0) + 1
                length = int(self.headers.get("Content-Length") or 0)
                if length:
                    self.rfile.read(length)

                if path == "/health":
                    self._send(stub.health_status, {"status": "ok" if stub.health_status == 200 else "down"})
                elif path == "/ready":
                    self._send(200, {"ready": True})
                elif path == "/v1/indexes":
                    self._send(200, ["claims"])
                elif path == "/fail":
                    self._send(500, {"error": "boom"})
                elif path == "/slow":
                    time.sleep(stub.slow_seconds)
                    self._send(200, {"slow": True})
                else:
                    self._send(404, {"error": "not found"})

            do_GET = _route
            do_POST = _route

            def log_message(self, format, *args):  # noqa: A002, ARG002
                # Keep output deterministic and avoid noisy logs.
                pass

        class ReusableHTTPServer(http.server.ThreadingHTTPServer):
            allow_reuse_address = True
            daemon_threads = True

        self._server = ReusableHTTPServer(("127.0.0.1", 0), Handler)
        self.port = int(self._server.server_port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"


@pytest.fixture
def stub_server():
    server = StubTargetServer()
    server.start()
    yield server
    server.stop()
