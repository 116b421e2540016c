"""Shared fixtures: a threaded local HTTP service for end-to-end runs."""

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

SSE_FRAMES = [
    ": connected\n\n",
    "event: heartbeat\ndata: {}\n\n",
    "event: created\ndata: {\"id\": \"item-1\", \"name\": \"gadget\"}\n\n",
    "event: heartbeat\ndata: {}\n\n",
    "event: done\ndata: {\"ok\": true}\n\n",
]


class ItemsHandler(BaseHTTPRequestHandler):
    """Small items service with JSON, text and event-stream endpoints."""

    def do_POST(self) -> None:  # noqa: N802 - HTTP handler requirement
        self.server.requests_seen.append(("POST", self.path, dict(self.headers)))
        if self.path != "/items":
            self._send_json(404, {"error": "not found"})
            return
        length = int(self.headers.get("Content-Length") or 0)
        payload = json.loads(self.rfile.read(length) or b"{}")
        with self.server.lock:
            item_id = f"item-{len(self.server.items) + 1}"
            item = {"id": item_id, "name": payload.get("name")}
            self.server.items[item_id] = item
        self._send_json(201, item)

    def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
        self.server.requests_seen.append(("GET", self.path, dict(self.headers)))
        path, _, query = self.path.partition("?")

        if path == "/items":
            self._send_json(200, {"items": list(self.server.items.values()), "query": query})
        elif path.startswith("/items/"):
            item = self.server.items.get(path[len("/items/"):])
            if item is None:
                self._send_json(404, {"error": "not found"})
            elif self.server.wrong_id:
                self._send_json(200, dict(item, id="someone-else"))
            else:
                self._send_json(200, item)
        elif path.startswith("/status/"):
            code = int(path[len("/status/"):])
            self._send_json(code, {"status": code})
        elif path == "/text":
            self._send_body(200, "text/plain; charset=utf-8", b"hello plain world")
        elif path == "/text/utf8":
            self._send_body(200, "text/plain", "café ünïcode".encode("utf-8"))
        elif path == "/events":
            self._send_stream(SSE_FRAMES)
        elif path == "/events/crlf":
            self._send_stream([frame.replace("\n", "\r\n") for frame in SSE_FRAMES])
        elif path == "/events/short":
            self._send_stream(SSE_FRAMES[:2])
        elif path == "/events/silent":
            self._send_stream(SSE_FRAMES[:2], hold_open=True)
        elif path == "/events/chunked":
            self._send_chunked_stream(SSE_FRAMES)
        elif path == "/events/forbidden":
            self._send_stream(SSE_FRAMES[:2] + ["event: error\ndata: {\"reason\": \"boom\"}\n\n"] + SSE_FRAMES[2:])
        else:
            self._send_json(404, {"error": "not found"})

    def _send_json(self, status: int, payload: dict) -> None:
        self._send_body(status, "application/json", json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    def _send_body(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_stream(self, frames: list[str], hold_open: bool = False) -> None:
        # HTTP/1.0 response: the body ends when the connection closes
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        for frame in frames:
            self.wfile.write(frame.encode("utf-8"))
            self.wfile.flush()
            time.sleep(0.01)
        if hold_open:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and not self.server.stopping.is_set():
                time.sleep(0.05)

    def _send_chunked_stream(self, frames: list[str]) -> None:
        self.protocol_version = "HTTP/1.1"
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Transfer-Encoding", "chunked")
        self.send_header("Connection", "close")
        self.end_headers()
        for frame in frames:
            data = frame.encode("utf-8")
            self.wfile.write(f"{len(data):x}\r\n".encode("ascii") + data + b"\r\n")
            self.wfile.flush()
            time.sleep(0.01)
        self.wfile.write(b"0\r\n\r\n")
        self.close_connection = True

    def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
        return


@pytest.fixture
def api_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), ItemsHandler)
    server.daemon_threads = True
    server.items = {}
    server.lock = threading.Lock()
    server.wrong_id = False
    server.requests_seen = []
    server.stopping = threading.Event()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield server

    server.stopping.set()
    server.shutdown()
    server.server_close()
    thread.join(timeout=2)


@pytest.fixture
def base_url(api_server) -> str:
    return f"http://127.0.0.1:{api_server.server_address[1]}"


@pytest.fixture
def write_file(tmp_path: Path):
    """Write a text file under tmp_path and return its path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
