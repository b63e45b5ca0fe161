#!/usr/bin/env python3
"""
Aleo Exporter CLI - Main entry point

Serves Aleo node status as Prometheus metrics. The node endpoint and
credentials come from ALEO_RPC_* environment variables, optionally loaded
from a .env file; listen address and metrics path come from flags.
"""

import argparse
import logging
import sys
from typing import List, Optional

from prometheus_client.core import CollectorRegistry

from .collector import AleoCollector
from .config import (DEFAULT_LISTEN_ADDRESS, DEFAULT_METRICS_PATH, build_config,
                     load_config_file, load_env_file, parse_listen_address)
from .errors import ConfigError
from .fetcher import RemoteStateFetcher
from .schema import build_schema
from .server import create_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='aleo-exporter',
        description='Prometheus exporter for Aleo node status',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  ALEO_RPC_ENDPOINT     Node status URL (required)
  ALEO_RPC_USERNAME     Basic auth username (optional)
  ALEO_RPC_PASSWORD     Basic auth password (optional)
  ALEO_RPC_FORMAT       Payload format: json or xml (default: json)
  ALEO_RPC_METHOD       JSON-RPC method; switches the request to POST
  ALEO_RPC_TIMEOUT      Request deadline in seconds (default: 10)
  ALEO_RPC_VERIFY_TLS   Verify the node's TLS certificate (default: false)

Examples:
  # Scrape a local node, listening on the default :9200
  ALEO_RPC_ENDPOINT=http://127.0.0.1:3030 %(prog)s

  # Custom listen address and metrics path
  %(prog)s --web.listen-address 127.0.0.1:9300 --web.telemetry-path /node-metrics
        """
    )

    parser.add_argument('--web.listen-address', dest='listen_address', default=None,
                        help=f'Address to listen on for telemetry (default: {DEFAULT_LISTEN_ADDRESS})')
    parser.add_argument('--web.telemetry-path', dest='metrics_path', default=None,
                        help=f'Path under which to expose metrics (default: {DEFAULT_METRICS_PATH})')
    parser.add_argument('-c', '--config',
                        help='Optional YAML configuration file')
    parser.add_argument('--env-file', default='.env',
                        help='Environment file to load at startup (default: .env)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')
    return parser


def setup_logging(log_level: str):
    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Reduce urllib3 connection pool chatter
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    load_env_file(args.env_file)

    try:
        file_settings = load_config_file(args.config) if args.config else None
        config = build_config(
            listen_address=args.listen_address,
            metrics_path=args.metrics_path,
            file_settings=file_settings,
        )
        address = parse_listen_address(config.listen_address)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info(f"Scraping {config.endpoint} ({config.payload_format}, {config.http_method}, "
                f"auth: {'basic' if config.has_credentials else 'none'}, timeout: {config.timeout}s)")

    fetcher = RemoteStateFetcher(config)
    registry = CollectorRegistry()
    registry.register(AleoCollector(fetcher, build_schema()))

    try:
        server = create_server(address, registry, config.metrics_path)
    except OSError as e:
        logger.error(f"Cannot listen on {config.listen_address}: {e}")
        fetcher.close()
        return 1

    logger.info(f"Exporter listening on {config.listen_address}, metrics at {config.metrics_path}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        server.server_close()
        fetcher.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
