#!/usr/bin/env python3
"""
Exposition HTTP server

Threaded HTTP server that renders the registry on every request to the
metrics path. Responses are gzip-compressed when the scraper accepts it.
Nothing is cached between requests.
"""

import gzip
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from io import BytesIO
from socketserver import ThreadingMixIn
from typing import Dict, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_client.core import CollectorRegistry

LANDING_PAGE = """<!DOCTYPE html>
<html>
<head><title>Aleo Exporter</title></head>
<body>
<h1>Aleo Exporter</h1>
<p>Prometheus exporter for Aleo node status.</p>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""

logger = logging.getLogger(__name__)


class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    """HTTP Server with threading support for concurrent requests"""
    daemon_threads = True
    allow_reuse_address = True


def render_metrics(registry: CollectorRegistry, accept_gzip: bool = False,
                   compress_level: int = 6) -> Tuple[bytes, Dict[str, str]]:
    """
    Run one collection and encode it.

    Args:
        registry: Registry holding the collector
        accept_gzip: Whether to return gzip-compressed data
        compress_level: Gzip compression level (1-9)

    Returns:
        tuple: (data, headers) where headers is a dict of HTTP headers
    """
    raw_data = generate_latest(registry)

    if not accept_gzip:
        return raw_data, {
            'Content-Type': CONTENT_TYPE_LATEST,
            'Content-Length': str(len(raw_data))
        }

    compressed_buffer = BytesIO()
    with gzip.GzipFile(fileobj=compressed_buffer, mode='wb', compresslevel=compress_level) as f:
        f.write(raw_data)
    compressed_data = compressed_buffer.getvalue()

    return compressed_data, {
        'Content-Type': CONTENT_TYPE_LATEST,
        'Content-Encoding': 'gzip',
        'Content-Length': str(len(compressed_data))
    }


def make_handler(registry: CollectorRegistry, metrics_path: str = '/metrics'):
    """Create a request handler bound to a registry and metrics path"""
    landing_page = LANDING_PAGE.format(metrics_path=metrics_path).encode('utf-8')

    class MetricsHandler(BaseHTTPRequestHandler):
        """Serves the metrics path, the landing page and a liveness probe"""

        def log_message(self, format, *args):
            logger.debug(f"{self.address_string()} - {format % args}")

        def _send(self, status: int, data: bytes, headers: Dict[str, str]):
            self.send_response(status)
            for name, value in headers.items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(data)

        def do_GET(self):
            path = self.path.split('?', 1)[0]
            try:
                if path == metrics_path:
                    self._handle_metrics()
                elif path == '/':
                    self._send(200, landing_page, {'Content-Type': 'text/html; charset=utf-8'})
                elif path == '/healthz':
                    self._send(200, b'ok\n', {'Content-Type': 'text/plain'})
                else:
                    self.send_error(404, "Not Found")
            except (BrokenPipeError, ConnectionResetError):
                # Client disconnected, nothing left to emit
                pass

        def _handle_metrics(self):
            accept_encoding = self.headers.get('Accept-Encoding', '')
            try:
                data, headers = render_metrics(registry, accept_gzip='gzip' in accept_encoding)
            except Exception as e:
                logger.error(f"Error serving metrics: {e}", exc_info=True)
                self.send_error(500, f"Internal Server Error: {e}")
                return
            self._send(200, data, headers)

    return MetricsHandler


def create_server(address: Tuple[str, int], registry: CollectorRegistry,
                  metrics_path: str = '/metrics') -> ThreadedHTTPServer:
    """Bind the exposition server without starting it"""
    return ThreadedHTTPServer(address, make_handler(registry, metrics_path))
