"""ExifTool-based metadata service implementation.

Date: 2026-10-19

Thin façade over one exiftool proxy. It builds argument lists for common
requests and turns '-veryShort' output lines ('Tag: value') into a dict.
Values are returned as the strings exiftool prints; type conversion and the
tag catalogue belong to callers.

The proxy is chosen from the requested features: Feature.STAY_OPEN keeps one
exiftool resident (KeepAliveExifProxy), otherwise every call spawns a new
process (SingleUseExifProxy).

Usage:
    from exifproxy.services.exiftool_service import ExifToolService
    from exifproxy.infra.external import Feature

    with ExifToolService(features=[Feature.STAY_OPEN]) as service:
        meta = service.get_image_meta("photo.jpg", ["FileSize", "ImageWidth"])
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from exifproxy.config import ProxySettings
from exifproxy.infra.external.errors import ExifToolError, UnsupportedFeatureError
from exifproxy.infra.external.exiftool_process import ExifToolProcess
from exifproxy.infra.external.keep_alive_proxy import KeepAliveExifProxy
from exifproxy.infra.external.single_use_proxy import SingleUseExifProxy
from exifproxy.infra.external.version import Feature, VersionNumber
from exifproxy.services.interfaces import ExifProxyProtocol
from exifproxy.utils.logging.logger_factory import get_cached_logger
from exifproxy.utils.shared.external_tools import ToolName, is_tool_available

logger = get_cached_logger(__name__)

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"
THUMBNAIL_SUFFIX = ".thumb.jpg"

_TAG_VALUE_SEPARATOR = re.compile(r"\s*:\s*")


@dataclass(frozen=True)
class ReadOptions:
    """Options for get_image_meta. Immutable; use the with_* helpers.

    Attributes:
        run_timeout_ms: Per-call watchdog, 0 uses the service default.
        numeric_output: Pass '-n' (raw numeric values).
        show_duplicates: Pass '-duplicates'.
        show_empty_tags: Keep tags whose value is empty.

    """

    run_timeout_ms: int = 0
    numeric_output: bool = False
    show_duplicates: bool = False
    show_empty_tags: bool = False

    def with_run_timeout_ms(self, ms: int) -> ReadOptions:
        return replace(self, run_timeout_ms=ms)

    def with_numeric_output(self, enabled: bool) -> ReadOptions:
        return replace(self, numeric_output=enabled)

    def with_show_duplicates(self, enabled: bool) -> ReadOptions:
        return replace(self, show_duplicates=enabled)

    def with_show_empty_tags(self, enabled: bool) -> ReadOptions:
        return replace(self, show_empty_tags=enabled)


@dataclass(frozen=True)
class WriteOptions:
    """Options for write_metadata.

    Attributes:
        run_timeout_ms: Per-call watchdog, 0 uses the service default.
        delete_backup_file: Pass '-overwrite_original' so exiftool does not
            keep a '<name>_original' copy.

    """

    run_timeout_ms: int = 0
    delete_backup_file: bool = False

    def with_run_timeout_ms(self, ms: int) -> WriteOptions:
        return replace(self, run_timeout_ms=ms)

    def with_delete_backup_file(self, enabled: bool) -> WriteOptions:
        return replace(self, delete_backup_file=enabled)


def parse_tag_lines(lines: Iterable[str], keep_empty: bool = True) -> dict[str, str]:
    """Split 'Tag: value' lines into a dict.

    Only the first separator counts, so values may contain colons
    ('DateTimeOriginal: 2024:01:02 10:00:00'). Lines without a separator are
    skipped.
    """
    result: dict[str, str] = {}
    for line in lines:
        parts = _TAG_VALUE_SEPARATOR.split(line, maxsplit=1)
        if len(parts) != 2:
            logger.debug(
                "[ExifToolService] Ignoring line without separator: %r",
                line,
                extra={"dev_only": True},
            )
            continue
        key, value = parts
        if not keep_empty and not value:
            continue
        result[key] = value
    return result


def format_tag_value(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime(EXIF_DATE_FORMAT)
    return str(value)


def build_write_args(tag: str, value: Any) -> list[str]:
    """Arguments assigning value to tag.

    Numbers use '-Tag#=' (no print conversion), sequences become one
    assignment per element and None clears the tag.
    """
    if isinstance(value, (list, tuple)):
        args: list[str] = []
        for item in value:
            args.extend(build_write_args(tag, item))
        return args
    if value is None:
        return [f"-{tag}="]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return [f"-{tag}#={value}"]
    return [f"-{tag}={format_tag_value(value)}"]


class ExifToolService:
    """Metadata read/write service backed by an exiftool proxy.

    Implements MetadataServiceProtocol.
    """

    def __init__(
        self,
        exiftool_path: str | None = None,
        features: Iterable[Feature] = (),
        inactivity_timeout_ms: int | None = None,
        run_timeout_ms: int | None = None,
        charset: str | None = None,
        check_version: bool = True,
        proxy: ExifProxyProtocol | None = None,
    ) -> None:
        """Create the service and its proxy.

        Args:
            exiftool_path: exiftool command, defaults to EXIFTOOL_PATH (env) or 'exiftool'.
            features: Optional features to enable.
            inactivity_timeout_ms: Idle close delay for the stay-open process.
            run_timeout_ms: Default per-call watchdog, 0 for none.
            charset: Encoding of the process streams.
            check_version: Run 'exiftool -ver' and reject features the
                installed version does not support.
            proxy: Use this proxy instead of building one.

        Raises:
            UnsupportedFeatureError: A requested feature is too new for the
                installed exiftool.
            LaunchFailed: exiftool could not be started to read its version.

        """
        settings = ProxySettings.from_env()
        self.exiftool_path = exiftool_path or settings.exiftool_path
        self.features = frozenset(features)
        self.run_timeout_ms = settings.run_timeout_ms if run_timeout_ms is None else run_timeout_ms
        self.charset = charset or settings.charset
        self._version: VersionNumber | None = None

        if check_version and self.features:
            for feature in sorted(self.features, key=lambda f: f.name):
                if not self.is_feature_supported(feature):
                    raise UnsupportedFeatureError(
                        feature.name, self.version, feature.required_version
                    )

        if proxy is not None:
            self._proxy = proxy
        else:
            base_args = [
                arg for f in sorted(self.features, key=lambda f: f.name) for arg in f.base_args
            ]
            if Feature.STAY_OPEN in self.features:
                self._proxy = KeepAliveExifProxy(
                    self.exiftool_path,
                    base_args,
                    inactivity_timeout_ms=(
                        settings.inactivity_timeout_ms
                        if inactivity_timeout_ms is None
                        else inactivity_timeout_ms
                    ),
                    charset=self.charset,
                    idle_sweep_interval_ms=settings.idle_sweep_interval_ms,
                    max_attempts=settings.max_attempts,
                )
            else:
                self._proxy = SingleUseExifProxy(self.exiftool_path, base_args, self.charset)
        logger.debug(
            "[ExifToolService] Using %s (features: %s)",
            type(self._proxy).__name__,
            sorted(f.name for f in self.features),
            extra={"dev_only": True},
        )

    # -- features ----------------------------------------------------------

    @property
    def version(self) -> VersionNumber:
        """Installed exiftool version, read once on first access."""
        if self._version is None:
            self._version = ExifToolProcess.read_version(self.exiftool_path, self.charset)
            logger.info("[ExifToolService] exiftool version %s", self._version)
        return self._version

    def is_feature_supported(self, feature: Feature) -> bool:
        return feature.is_supported(self.version)

    def is_feature_enabled(self, feature: Feature) -> bool:
        return feature in self.features

    def is_stay_open(self) -> bool:
        return Feature.STAY_OPEN in self.features

    def is_available(self) -> bool:
        """True if exiftool can be located (absolute path, env override or PATH)."""
        if Path(self.exiftool_path).is_absolute():
            return Path(self.exiftool_path).is_file()
        return is_tool_available(ToolName.EXIFTOOL)

    # -- lifecycle ---------------------------------------------------------

    @property
    def proxy(self) -> ExifProxyProtocol:
        return self._proxy

    def startup(self) -> None:
        self._proxy.startup()

    def is_running(self) -> bool:
        return self._proxy.is_running()

    def shutdown(self) -> None:
        self._proxy.shutdown()

    def close(self) -> None:
        """Shut the proxy down and release its process."""
        try:
            self._proxy.shutdown()
            logger.debug("[ExifToolService] Proxy closed", extra={"dev_only": True})
        except ExifToolError as e:
            logger.warning("[ExifToolService] Error closing proxy: %s", e)

    def __enter__(self) -> ExifToolService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- requests ----------------------------------------------------------

    def execute(self, args: Sequence[str], run_timeout_ms: int | None = None) -> list[str]:
        """Send raw arguments and return exiftool's output lines."""
        timeout = self.run_timeout_ms if not run_timeout_ms else run_timeout_ms
        logger.info(
            "[ExifToolService] call stay_open=%s exiftool %s", self.is_stay_open(), " ".join(args)
        )
        return self._proxy.execute(timeout, list(args))

    def get_image_meta(
        self,
        path: str | Path,
        tags: Sequence[str] = (),
        options: ReadOptions | None = None,
    ) -> dict[str, str]:
        """Read tag values from a file.

        Args:
            path: File to read.
            tags: Tag names without the leading '-'; empty reads every tag.
            options: Read options.

        Returns:
            Mapping of tag name to the value printed by exiftool.

        """
        options = options or ReadOptions()
        args: list[str] = []
        if options.numeric_output:
            args.append("-n")
        if options.show_duplicates:
            args.append("-duplicates")
        args.append("-veryShort")
        args.extend(f"-{tag}" for tag in tags)
        args.append(_absolute(path))

        logger.debug(
            "[ExifToolService] Querying %d tags from %s",
            len(tags),
            path,
            extra={"dev_only": True},
        )
        lines = self.execute(args, options.run_timeout_ms)
        return parse_tag_lines(lines, keep_empty=options.show_empty_tags)

    def write_metadata(
        self,
        path: str | Path,
        values: Mapping[str, Any],
        options: WriteOptions | None = None,
    ) -> None:
        """Write tag values to a file.

        Raises:
            ValueError: values is empty.

        """
        if not values:
            raise ValueError("values must contain 1 or more tag to value mappings")
        options = options or WriteOptions()
        args: list[str] = []
        for tag, value in values.items():
            args.extend(build_write_args(tag, value))
        if options.delete_backup_file:
            args.append("-overwrite_original")
        args.append(_absolute(path))

        logger.info("[ExifToolService] Adding tags %s to %s", list(values), path)
        self.execute(args, options.run_timeout_ms)

    def get_image_metadata_xml(self, path: str | Path, include_binary: bool = False) -> str:
        """Metadata in exiftool's RDF/XML format ('-X')."""
        args = ["-X"]
        if include_binary:
            args.append("-b")
        args.append(_absolute(path))
        return "\n".join(self.execute(args))

    def extract_icc_profile(self, path: str | Path, output: str | Path) -> str:
        """Write the ICC profile of path to output; returns exiftool's summary."""
        args = ["-icc_profile", _absolute(path), "-o", _absolute(output)]
        return "\n".join(self.execute(args))

    def extract_thumbnail(self, path: str | Path, tag: str = "ThumbnailImage") -> Path:
        """Extract an embedded thumbnail next to the input file.

        exiftool names the output '<stem>.thumb.jpg' in the input's folder.

        Raises:
            ExifToolError: The thumbnail file was not created.

        """
        source = Path(path).absolute()
        args = [f"-{tag}", str(source), "-b", "-w", THUMBNAIL_SUFFIX]
        result = "\n".join(self.execute(args))
        thumbnail = source.with_name(source.stem + THUMBNAIL_SUFFIX)
        if not thumbnail.exists():
            raise ExifToolError(f"could not create thumbnail: {result}", args_list=args)
        return thumbnail


def _absolute(path: str | Path) -> str:
    return str(Path(path).absolute())

