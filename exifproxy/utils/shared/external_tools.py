"""Module: external_tools.py

Date: 2026-10-19

External tool detection and path resolution.

Lookup order for exiftool:
- EXIFTOOL_PATH environment variable (explicit override)
- System PATH ('which' on Unix-like systems, 'where' on Windows)

Usage:
    from exifproxy.utils.shared.external_tools import get_tool_path, ToolName

    # Raises FileNotFoundError if not found
    exiftool = get_tool_path(ToolName.EXIFTOOL)
"""

import os
import platform
import subprocess
from enum import Enum
from pathlib import Path

from exifproxy.config import ENV_EXIFTOOL_PATH
from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)


class ToolName(str, Enum):
    """Supported external tools."""

    EXIFTOOL = "exiftool"


_ENV_OVERRIDES = {
    ToolName.EXIFTOOL: ENV_EXIFTOOL_PATH,
}


def get_env_tool_path(tool_name: ToolName) -> str | None:
    """Return the tool path configured through the environment, if any."""
    env_name = _ENV_OVERRIDES.get(tool_name)
    if not env_name:
        return None
    value = os.environ.get(env_name, "").strip()
    if not value:
        return None
    if Path(value).is_absolute() and not Path(value).exists():
        logger.warning(
            "[ExternalTools] %s points to a missing file: %s", env_name, value
        )
        return None
    return value


def get_system_tool_path(tool_name: ToolName) -> str | None:
    """Find tool in system PATH.

    Args:
        tool_name: Tool to locate

    Returns:
        Path string to the tool or None if not found

    """
    try:
        cmd = "where" if platform.system() == "Windows" else "which"

        result = subprocess.run(
            [cmd, tool_name.value], capture_output=True, text=True, timeout=5, check=False
        )

        if result.returncode == 0 and result.stdout.strip():
            # 'where' can return multiple paths
            system_path = result.stdout.strip().splitlines()[0]
            logger.debug("[ExternalTools] Found system %s at: %s", tool_name.value, system_path)
            return system_path

    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.debug("[ExternalTools] Failed to find %s in system PATH: %s", tool_name.value, e)

    return None


def get_tool_path(tool_name: ToolName = ToolName.EXIFTOOL) -> str:
    """Get the path to an external tool.

    Args:
        tool_name: Tool to locate

    Returns:
        Path string to the tool

    Raises:
        FileNotFoundError: If tool not found anywhere

    """
    configured = get_env_tool_path(tool_name)
    if configured:
        logger.info("[ExternalTools] Using configured %s: %s", tool_name.value, configured)
        return configured

    system_path = get_system_tool_path(tool_name)
    if system_path:
        logger.info("[ExternalTools] Using system %s: %s", tool_name.value, system_path)
        return system_path

    raise FileNotFoundError(
        f"{tool_name.value} not found. Install it, add it to PATH or set "
        f"{_ENV_OVERRIDES.get(tool_name, 'the tool path')}. "
        f"Download from: {_get_download_url(tool_name)}"
    )


def is_tool_available(tool_name: ToolName = ToolName.EXIFTOOL) -> bool:
    """Check if a tool is available without raising exceptions."""
    try:
        get_tool_path(tool_name)
        return True
    except FileNotFoundError:
        return False


def _get_download_url(tool_name: ToolName) -> str:
    """Get download URL for a tool."""
    urls = {
        ToolName.EXIFTOOL: "https://exiftool.org/",
    }
    return urls.get(tool_name, "")
