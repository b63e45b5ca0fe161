#!/usr/bin/env python3
"""
Exporter configuration

ExporterConfig is built once at startup from CLI flags, environment
variables (optionally loaded from a .env file) and an optional YAML file,
then shared read-only by every scrape.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .decoders import DECODERS
from .errors import ConfigError

ENV_PREFIX = 'ALEO_RPC_'

DEFAULT_LISTEN_ADDRESS = ':9200'
DEFAULT_METRICS_PATH = '/metrics'
DEFAULT_PAYLOAD_FORMAT = 'json'
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BODY_BYTES = 1024 * 1024

RESERVED_PATHS = ('/', '/healthz')

# YAML keys accepted in the config file
CONFIG_KEYS = (
    'endpoint', 'username', 'password', 'payload_format', 'rpc_method',
    'timeout', 'max_body_bytes', 'verify_tls', 'listen_address', 'metrics_path',
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExporterConfig:
    """Process-wide exporter settings"""

    endpoint: str
    username: Optional[str] = None
    password: Optional[str] = None
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    metrics_path: str = DEFAULT_METRICS_PATH
    payload_format: str = DEFAULT_PAYLOAD_FORMAT
    rpc_method: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    verify_tls: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    @property
    def http_method(self) -> str:
        return 'POST' if self.rpc_method else 'GET'

    def __repr__(self):
        # Never leak the password into logs
        return (f"ExporterConfig(endpoint={self.endpoint!r}, username={self.username!r}, "
                f"listen_address={self.listen_address!r}, metrics_path={self.metrics_path!r}, "
                f"payload_format={self.payload_format!r}, rpc_method={self.rpc_method!r}, "
                f"timeout={self.timeout}, verify_tls={self.verify_tls})")


def parse_listen_address(address: str) -> Tuple[str, int]:
    """
    Split a ``[host]:port`` listen address.

    Args:
        address: Address such as ``:9200`` or ``127.0.0.1:9200``

    Returns:
        tuple: (host, port); an empty host binds all interfaces
    """
    if ':' not in address:
        raise ConfigError(f"Invalid listen address '{address}': expected [host]:port")
    host, port = address.rsplit(':', 1)
    host = host.strip('[]')
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Invalid listen address '{address}': port is not a number") from None
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"Invalid listen address '{address}': port out of range")
    return host, port_number


def load_env_file(path: str = '.env') -> bool:
    """Load variables from an env file without overriding the environment"""
    if not os.path.isfile(path):
        logger.info(f"No env file at {path}, assuming environment variables are set")
        return False
    loaded = load_dotenv(path, override=False)
    logger.info(f"Loaded environment from {path}")
    return loaded


def load_config_file(path: str) -> Dict[str, Any]:
    """Read the optional YAML config file"""
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML configuration: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
    return {key: data[key] for key in CONFIG_KEYS if data.get(key) is not None}


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off', ''):
        return False
    raise ConfigError(f"{name} must be a boolean, got '{value}'")


def _parse_number(value: Any, name: str, kind=float):
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got '{value}'") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return number


def build_config(listen_address: Optional[str] = None,
                 metrics_path: Optional[str] = None,
                 file_settings: Optional[Mapping[str, Any]] = None,
                 environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """
    Merge configuration sources into an ExporterConfig.

    Precedence: explicit flags, then ``ALEO_RPC_*`` environment variables,
    then the YAML file, then defaults.

    Args:
        listen_address: ``--web.listen-address`` if given on the command line
        metrics_path: ``--web.telemetry-path`` if given on the command line
        file_settings: Settings read by load_config_file()
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: If the endpoint is missing or a value is invalid
    """
    environ = os.environ if environ is None else environ
    settings = dict(file_settings or {})

    def setting(key: str, env_name: Optional[str] = None):
        value = environ.get(ENV_PREFIX + (env_name or key.upper()))
        if value not in (None, ''):
            return value
        return settings.get(key)

    endpoint = setting('endpoint')
    if not endpoint:
        raise ConfigError(f"{ENV_PREFIX}ENDPOINT is not set; the exporter has nothing to scrape")
    endpoint = str(endpoint).strip()
    if not endpoint.lower().startswith(('http://', 'https://')):
        raise ConfigError(f"{ENV_PREFIX}ENDPOINT must be an http(s) URL, got '{endpoint}'")

    payload_format = str(setting('payload_format', 'FORMAT') or DEFAULT_PAYLOAD_FORMAT).lower()
    if payload_format not in DECODERS:
        raise ConfigError(
            f"{ENV_PREFIX}FORMAT must be one of {', '.join(sorted(DECODERS))}, got '{payload_format}'"
        )

    listen_address = listen_address or settings.get('listen_address') or DEFAULT_LISTEN_ADDRESS
    parse_listen_address(listen_address)

    metrics_path = metrics_path or settings.get('metrics_path') or DEFAULT_METRICS_PATH
    if not metrics_path.startswith('/') or metrics_path in RESERVED_PATHS:
        raise ConfigError(f"Invalid metrics path '{metrics_path}'")

    username = setting('username')
    password = setting('password')
    rpc_method = setting('rpc_method', 'METHOD')
    timeout = setting('timeout')
    max_body_bytes = setting('max_body_bytes')

    return ExporterConfig(
        endpoint=endpoint,
        username=str(username) if username else None,
        password=str(password) if password is not None else None,
        listen_address=listen_address,
        metrics_path=metrics_path,
        payload_format=payload_format,
        rpc_method=str(rpc_method) if rpc_method else None,
        timeout=_parse_number(DEFAULT_TIMEOUT if timeout is None else timeout,
                              f"{ENV_PREFIX}TIMEOUT"),
        max_body_bytes=_parse_number(DEFAULT_MAX_BODY_BYTES if max_body_bytes is None else max_body_bytes,
                                     f"{ENV_PREFIX}MAX_BODY_BYTES", kind=int),
        verify_tls=_parse_bool(setting('verify_tls') or False, f"{ENV_PREFIX}VERIFY_TLS"),
    )
