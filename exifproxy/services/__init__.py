"""Services layer for exifproxy.

Date: 2026-10-19

Metadata service built on the exiftool proxies, plus the Protocol classes
used to swap proxies or services in tests.

Usage:
    from exifproxy.services import ExifToolService, ReadOptions, WriteOptions
    from exifproxy.services import ExifProxyProtocol, MetadataServiceProtocol

Modules:
    interfaces: Protocol definitions
    exiftool_service: exiftool-backed metadata read/write
"""

from __future__ import annotations

from exifproxy.services.exiftool_service import (
    ExifToolService,
    ReadOptions,
    WriteOptions,
    build_write_args,
    parse_tag_lines,
)
from exifproxy.services.interfaces import ExifProxyProtocol, MetadataServiceProtocol

__all__ = [
    "ExifProxyProtocol",
    "ExifToolService",
    "MetadataServiceProtocol",
    "ReadOptions",
    "WriteOptions",
    "build_write_args",
    "parse_tag_lines",
]
