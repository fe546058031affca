"""exifproxy - drive exiftool as a subprocess, one-shot or kept resident.

Date: 2026-10-19

Usage:
    from exifproxy import KeepAliveExifProxy

    with KeepAliveExifProxy("exiftool", inactivity_timeout_ms=60_000) as proxy:
        lines = proxy.execute(5000, ["-n", "-S", "-FileSize", "img.jpg"])
"""

from exifproxy.config.app import APP_VERSION as __version__
from exifproxy.infra.external import (
    CallTimedOut,
    ChannelClosed,
    ExifToolError,
    ExifToolProcess,
    Feature,
    KeepAliveExifProxy,
    LaunchFailed,
    ProcessRegistry,
    ProtocolViolation,
    RetriesExhausted,
    ShuttingDown,
    SingleUseExifProxy,
    ToolReportedError,
    UnsupportedFeatureError,
    VersionNumber,
    get_process_registry,
)
from exifproxy.services import ExifToolService, ReadOptions, WriteOptions

__all__ = [
    "CallTimedOut",
    "ChannelClosed",
    "ExifToolError",
    "ExifToolProcess",
    "ExifToolService",
    "Feature",
    "KeepAliveExifProxy",
    "LaunchFailed",
    "ProcessRegistry",
    "ProtocolViolation",
    "ReadOptions",
    "RetriesExhausted",
    "ShuttingDown",
    "SingleUseExifProxy",
    "ToolReportedError",
    "UnsupportedFeatureError",
    "VersionNumber",
    "WriteOptions",
    "__version__",
    "get_process_registry",
]
