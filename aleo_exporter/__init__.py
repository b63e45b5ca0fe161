#!/usr/bin/env python3
"""
Aleo Exporter - Prometheus exporter for Aleo node status

On every scrape the exporter queries the node status API over HTTP and
exposes the result as namespaced gauges, or ``aleo_up 0`` when the node
cannot be read.
"""

__version__ = '1.0.0'

__all__ = ['AleoCollector', 'RemoteStateFetcher', 'ExporterConfig', 'build_schema']

from .collector import AleoCollector
from .config import ExporterConfig
from .fetcher import RemoteStateFetcher
from .schema import build_schema
