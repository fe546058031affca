"""External tool proxies - exiftool.

Date: 2026-10-19
"""

from exifproxy.infra.external.errors import (
    CallTimedOut,
    ChannelClosed,
    ExifToolError,
    LaunchFailed,
    ProtocolViolation,
    RetriesExhausted,
    ShuttingDown,
    ToolReportedError,
    UnsupportedFeatureError,
)
from exifproxy.infra.external.exiftool_process import ExifToolProcess
from exifproxy.infra.external.keep_alive_proxy import KeepAliveExifProxy
from exifproxy.infra.external.process_registry import ProcessRegistry, get_process_registry
from exifproxy.infra.external.scheduler import ScheduledTask, TaskScheduler
from exifproxy.infra.external.single_use_proxy import SingleUseExifProxy
from exifproxy.infra.external.version import Feature, VersionNumber

__all__ = [
    "CallTimedOut",
    "ChannelClosed",
    "ExifToolError",
    "ExifToolProcess",
    "Feature",
    "KeepAliveExifProxy",
    "LaunchFailed",
    "ProcessRegistry",
    "ProtocolViolation",
    "RetriesExhausted",
    "ScheduledTask",
    "ShuttingDown",
    "SingleUseExifProxy",
    "TaskScheduler",
    "ToolReportedError",
    "UnsupportedFeatureError",
    "VersionNumber",
    "get_process_registry",
]
