"""
Service protocol definitions for exifproxy.

Date: 2026-10-19

Protocol classes for the proxies and the metadata service built on them.
Both proxies (single-use and keep-alive) satisfy ExifProxyProtocol, so the
service and its tests can take either one, or a fake.

All protocols are runtime-checkable, meaning isinstance() works with them.

Usage:
    from exifproxy.services.interfaces import ExifProxyProtocol

    class RecordingProxy:
        def __init__(self):
            self.calls = []

        def execute(self, run_timeout_ms, args):
            self.calls.append(list(args))
            return ["FileSize: 1024"]

        def startup(self): ...
        def shutdown(self): ...
        def is_running(self): return False

    proxy: ExifProxyProtocol = RecordingProxy()
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "ExifProxyProtocol",
    "MetadataServiceProtocol",
]


@runtime_checkable
class ExifProxyProtocol(Protocol):
    """Uniform call contract of the exiftool proxies."""

    def execute(self, run_timeout_ms: int, args: Sequence[str]) -> list[str]:
        """Run one request and return exiftool's output lines.

        Args:
            run_timeout_ms: Watchdog duration, 0 or less for none.
            args: Request arguments.

        Returns:
            Output lines in arrival order.
        """
        ...

    def startup(self) -> None:
        """Prepare the proxy for calls (may start a process)."""
        ...

    def shutdown(self) -> None:
        """Release processes and timers held by the proxy."""
        ...

    def is_running(self) -> bool:
        """True while a resident process is ready."""
        ...


@runtime_checkable
class MetadataServiceProtocol(Protocol):
    """Protocol for metadata read/write services."""

    def get_image_meta(self, path: str | Path, tags: Sequence[str] = ()) -> dict[str, str]:
        """Read tag values from a file.

        Args:
            path: File to read.
            tags: Tag names; empty reads every tag.

        Returns:
            Mapping of tag name to raw string value.
        """
        ...

    def write_metadata(self, path: str | Path, values: Mapping[str, Any]) -> None:
        """Write tag values to a file.

        Args:
            path: File to modify.
            values: Mapping of tag name to value.
        """
        ...
