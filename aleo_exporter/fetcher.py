#!/usr/bin/env python3
"""
Remote State Fetcher

Issues one HTTP request per scrape to the node status endpoint and decodes
the body into NodeState records. Every failure is raised as a FetchError
subclass; nothing here retries or terminates the process.
"""

import logging
import socket
import threading
import time
from typing import Optional, Tuple

import requests
import urllib3
from requests.adapters import HTTPAdapter

from .config import ExporterConfig
from .decoders import StateDecoder, get_decoder
from .errors import DecodeError, UnreachableError, UpstreamError
from .state import NodeState

READ_CHUNK_SIZE = 8192

# Node RPC endpoints are usually internal and self-signed
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def create_session(pool_size: int = 10) -> requests.Session:
    """Session with a shared connection pool and retries disabled"""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_size, max_retries=0)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


class RemoteStateFetcher:
    """Fetch and decode the node state from the configured endpoint"""

    def __init__(self, config: ExporterConfig, session: Optional[requests.Session] = None,
                 decoder: Optional[StateDecoder] = None):
        self.config = config
        self.session = session if session is not None else create_session()
        self.decoder = decoder if decoder is not None else get_decoder(config.payload_format)
        self.logger = logging.getLogger(__name__)

        if not config.verify_tls and config.endpoint.lower().startswith('https://'):
            self.logger.warning(
                f"TLS certificate verification is disabled for {config.endpoint} "
                f"(set ALEO_RPC_VERIFY_TLS=true to enable it)"
            )

    def _request_kwargs(self) -> dict:
        kwargs = {
            'timeout': self.config.timeout,
            'verify': self.config.verify_tls,
            'stream': True,
        }
        if self.config.has_credentials:
            kwargs['auth'] = (self.config.username, self.config.password or '')
        if self.config.rpc_method:
            kwargs['json'] = {
                'jsonrpc': '2.0',
                'id': 1,
                'method': self.config.rpc_method,
                'params': [],
            }
        return kwargs

    @staticmethod
    def _abort(response: requests.Response):
        """Wake a read blocked on a slow upstream; the socket then reads EOF"""
        connection = getattr(response.raw, 'connection', None)
        sock = getattr(connection, 'sock', None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already closed by the reading thread
            pass

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """
        Read at most max_body_bytes before the deadline.

        The per-read timeout restarts on every received byte, so a watchdog
        shuts the socket down once the overall deadline passes.
        """
        limit = self.config.max_body_bytes
        body = bytearray()
        watchdog = threading.Timer(max(deadline - time.monotonic(), 0), self._abort, args=(response,))
        watchdog.daemon = True
        watchdog.start()
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                body.extend(chunk)
                if len(body) > limit:
                    raise DecodeError(f"response body exceeds {limit} bytes")
                if time.monotonic() > deadline:
                    break
        except requests.exceptions.RequestException as e:
            if time.monotonic() <= deadline:
                raise
            raise UnreachableError(f"read deadline of {self.config.timeout}s exceeded") from e
        finally:
            watchdog.cancel()

        if time.monotonic() > deadline:
            raise UnreachableError(f"read deadline of {self.config.timeout}s exceeded")
        return bytes(body)

    def fetch(self) -> Tuple[NodeState, ...]:
        """
        Fetch the current node state.

        Returns:
            tuple: One NodeState per channel (a single state when the node
            does not report channels)

        Raises:
            UnreachableError: Connection refused, DNS failure or timeout
            UpstreamError: Non-2xx status or a JSON-RPC error reply
            DecodeError: Malformed, oversized or incomplete body
        """
        url = self.config.endpoint
        deadline = time.monotonic() + self.config.timeout

        try:
            with self.session.request(self.config.http_method, url, **self._request_kwargs()) as response:
                if not 200 <= response.status_code < 300:
                    raise UpstreamError(response.status_code, response.reason)
                body = self._read_body(response, deadline)
        except requests.exceptions.ContentDecodingError as e:
            raise DecodeError(f"cannot decode response content: {e}") from e
        except requests.exceptions.Timeout as e:
            raise UnreachableError(f"timed out after {self.config.timeout}s: {e}") from e
        except requests.exceptions.RequestException as e:
            raise UnreachableError(f"request to {url} failed: {e}") from e

        states = self.decoder.decode(body)
        self.logger.debug(f"Fetched {len(states)} node state(s) from {url} ({len(body)} bytes)")
        return states

    def close(self):
        self.session.close()
