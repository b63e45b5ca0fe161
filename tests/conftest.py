import json
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from aleo_exporter.config import ExporterConfig
from aleo_exporter.state import NodeState

HEALTHY_NODE = {
    "type": "validator",
    "status": "synced",
    "number_of_connected_sync_nodes": 1,
    "number_of_connected_peers": 5,
    "number_of_candidate_peers": 12,
    "latest_cumulative_weight": 987654,
    "latest_block_height": 18500,
    "blocks_mined": [17990, 17999, 18000, 18250, 18499],
}


class FakeUpstream:
    """Local node status API whose next responses can be scripted"""

    def __init__(self):
        self.status = 200
        self.body = json.dumps(HEALTHY_NODE).encode()
        self.content_type = "application/json"
        self.delay = 0.0
        self.requests = []
        self._lock = threading.Lock()
        self._server = None
        self._thread = None

    @property
    def url(self):
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/status"

    def respond(self, status=200, body=None, delay=0.0, content_type="application/json"):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode()
        with self._lock:
            self.status = status
            self.body = body if body is not None else b""
            self.delay = delay
            self.content_type = content_type

    def _make_handler(self):
        upstream = self

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format, *args):
                pass

            def _reply(self):
                length = int(self.headers.get("Content-Length", 0) or 0)
                payload = self.rfile.read(length) if length else b""
                with upstream._lock:
                    upstream.requests.append({
                        "method": self.command,
                        "path": self.path,
                        "headers": dict(self.headers),
                        "body": payload,
                    })
                    status, body = upstream.status, upstream.body
                    delay, content_type = upstream.delay, upstream.content_type
                if delay:
                    time.sleep(delay)
                try:
                    self.send_response(status)
                    self.send_header("Content-Type", content_type)
                    self.send_header("Content-Length", str(len(body)))
                    self.end_headers()
                    self.wfile.write(body)
                except (BrokenPipeError, ConnectionResetError):
                    pass

            do_GET = _reply
            do_POST = _reply

        return Handler

    def start(self):
        self._server = ThreadingHTTPServer(("127.0.0.1", 0), self._make_handler())
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        self._server.shutdown()
        self._server.server_close()


@pytest.fixture
def upstream():
    server = FakeUpstream()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def closed_port_url():
    """URL of a local port nothing listens on"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}/status"


@pytest.fixture
def make_config():
    def _make(endpoint, **overrides):
        overrides.setdefault("timeout", 2.0)
        return ExporterConfig(endpoint=endpoint, **overrides)
    return _make


@pytest.fixture
def node_state():
    def _make(**overrides):
        fields = dict(
            node_type="validator",
            status="synced",
            connected_sync_nodes=1,
            connected_peers=5,
            candidate_peers=12,
            cumulative_weight=987654,
            latest_block_height=18500,
            blocks_mined_before_threshold=2,
            blocks_mined_after_threshold=3,
            channel=None,
        )
        fields.update(overrides)
        return NodeState(**fields)
    return _make


class StubFetcher:
    """Fetcher double returning canned states or raising a canned error"""

    def __init__(self, states=None, error=None):
        self.states = tuple(states or ())
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.states


@pytest.fixture
def stub_fetcher():
    return StubFetcher
