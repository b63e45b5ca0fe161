#!/usr/bin/env python3
"""
Exporter errors

Per-scrape failures derive from FetchError and are absorbed by the collector.
ConfigError is raised only at startup and is fatal.
"""

from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors"""


class ConfigError(ExporterError):
    """Invalid or missing startup configuration"""


class FetchError(ExporterError):
    """A scrape could not produce a node state"""


class UnreachableError(FetchError):
    """Network-level failure: refused, DNS, timeout, broken transfer"""


class UpstreamError(FetchError):
    """The upstream answered, but not with a usable success response"""

    def __init__(self, status: int, detail: Optional[str] = None):
        self.status = status
        self.detail = detail
        message = f"upstream returned HTTP {status}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DecodeError(FetchError):
    """The response body does not match the expected payload schema"""
