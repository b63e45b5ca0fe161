import base64
import json
import socket
import threading
import time

import pytest

from aleo_exporter.errors import DecodeError, UnreachableError, UpstreamError
from aleo_exporter.fetcher import RemoteStateFetcher

from conftest import HEALTHY_NODE


def test_get_without_credentials(upstream, make_config):
    fetcher = RemoteStateFetcher(make_config(upstream.url))
    (state,) = fetcher.fetch()

    assert state.connected_peers == 5
    (request,) = upstream.requests
    assert request["method"] == "GET"
    assert request["path"] == "/status"
    assert "Authorization" not in request["headers"]


def test_basic_auth_when_configured(upstream, make_config):
    fetcher = RemoteStateFetcher(make_config(upstream.url, username="aleo", password="s3cret"))
    fetcher.fetch()

    expected = "Basic " + base64.b64encode(b"aleo:s3cret").decode()
    assert upstream.requests[0]["headers"]["Authorization"] == expected


def test_json_rpc_post(upstream, make_config):
    upstream.respond(body={"jsonrpc": "2.0", "id": 1, "result": HEALTHY_NODE})
    fetcher = RemoteStateFetcher(make_config(upstream.url, rpc_method="getnodestate"))
    (state,) = fetcher.fetch()

    assert state.latest_block_height == 18500
    request = upstream.requests[0]
    assert request["method"] == "POST"
    assert json.loads(request["body"]) == {
        "jsonrpc": "2.0", "id": 1, "method": "getnodestate", "params": [],
    }


def test_xml_payload(upstream, make_config):
    upstream.respond(body=(
        "<nodeState><type>client</type><status>ready</status>"
        "<connectedSyncNodes>0</connectedSyncNodes><connectedPeers>3</connectedPeers>"
        "<candidatePeers>1</candidatePeers><cumulativeWeight>77</cumulativeWeight>"
        "<latestBlockHeight>500</latestBlockHeight><blocksMined>0</blocksMined></nodeState>"
    ), content_type="application/xml")
    fetcher = RemoteStateFetcher(make_config(upstream.url, payload_format="xml"))
    (state,) = fetcher.fetch()
    assert (state.node_type, state.connected_peers) == ("client", 3)


@pytest.mark.parametrize("status", [401, 404, 500, 503])
def test_non_2xx_is_upstream_error(upstream, make_config, status):
    upstream.respond(status=status, body="nope")
    fetcher = RemoteStateFetcher(make_config(upstream.url))
    with pytest.raises(UpstreamError) as exc_info:
        fetcher.fetch()
    assert exc_info.value.status == status


def test_connection_refused(closed_port_url, make_config):
    fetcher = RemoteStateFetcher(make_config(closed_port_url))
    with pytest.raises(UnreachableError):
        fetcher.fetch()


def test_timeout(upstream, make_config):
    upstream.respond(body=HEALTHY_NODE, delay=1.0)
    fetcher = RemoteStateFetcher(make_config(upstream.url, timeout=0.2))
    with pytest.raises(UnreachableError):
        fetcher.fetch()


@pytest.fixture
def drip_upstream():
    """Raw socket upstream that sends its body one byte every 100 ms"""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5.0)
    stop = threading.Event()

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            conn.recv(65536)
            body = json.dumps(HEALTHY_NODE).encode()
            head = (
                "HTTP/1.1 200 OK\r\n"
                "Content-Type: application/json\r\n"
                f"Content-Length: {len(body)}\r\n\r\n"
            )
            try:
                conn.sendall(head.encode())
                for byte in body:
                    if stop.is_set():
                        break
                    conn.sendall(bytes([byte]))
                    time.sleep(0.1)
            except OSError:
                pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    port = listener.getsockname()[1]
    yield f"http://127.0.0.1:{port}/status"
    stop.set()
    listener.close()


def test_slow_body_is_cut_at_deadline(drip_upstream, make_config):
    fetcher = RemoteStateFetcher(make_config(drip_upstream, timeout=1.0))
    start = time.monotonic()
    with pytest.raises(UnreachableError):
        fetcher.fetch()
    assert time.monotonic() - start < 2.0


def test_malformed_body(upstream, make_config):
    upstream.respond(body="{\"type\": ")
    fetcher = RemoteStateFetcher(make_config(upstream.url))
    with pytest.raises(DecodeError):
        fetcher.fetch()


def test_body_size_is_bounded(upstream, make_config):
    upstream.respond(body=dict(HEALTHY_NODE, padding="x" * 4096))
    fetcher = RemoteStateFetcher(make_config(upstream.url, max_body_bytes=1024))
    with pytest.raises(DecodeError):
        fetcher.fetch()


def test_no_retries(upstream, make_config):
    upstream.respond(status=502, body="bad gateway")
    fetcher = RemoteStateFetcher(make_config(upstream.url))
    with pytest.raises(UpstreamError):
        fetcher.fetch()
    assert len(upstream.requests) == 1


def test_tls_verification_disabled_by_default(make_config):
    fetcher = RemoteStateFetcher(make_config("https://node.internal:3030/status"))
    assert fetcher._request_kwargs()["verify"] is False

    fetcher = RemoteStateFetcher(make_config("https://node.internal:3030/status", verify_tls=True))
    assert fetcher._request_kwargs()["verify"] is True
