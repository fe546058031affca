"""Module: exifproxy.config.features

Date: 2026-10-19

ExifTool process settings: tool path, timeouts, retry budget and the
environment overrides used to tune them without code changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# =====================================
# EXIFTOOL PROCESS SETTINGS
# =====================================

# Command used when no explicit path is configured
EXIFTOOL_PATH = "exiftool"

# Idle time before a stay-open process is reclaimed (0 disables)
EXIFTOOL_PROCESS_CLEANUP_DELAY_MS = 600_000

# Per-call watchdog (0 disables)
EXIFTOOL_RUN_TIMEOUT_MS = 0

# How often the idle sweep looks at the last call time
EXIFTOOL_IDLE_SWEEP_INTERVAL_MS = 60_000

EXIFTOOL_MAX_ATTEMPTS = 3
EXIFTOOL_STDERR_QUEUE_SIZE = 50
EXIFTOOL_CHARSET = "utf-8"

# Bounded waits used while closing a process (seconds)
EXIFTOOL_CLOSE_GRACEFUL_WAIT_S = 0.2
EXIFTOOL_CLOSE_TERMINATE_WAIT_S = 0.5
EXIFTOOL_CLOSE_KILL_WAIT_S = 0.5
EXIFTOOL_DRAIN_JOIN_WAIT_S = 0.5

# After stdout ends early: how long to wait to tell an exit from a broken stream
EXIFTOOL_EOF_EXIT_WAIT_S = 0.5

# Environment overrides
ENV_EXIFTOOL_PATH = "EXIFTOOL_PATH"
ENV_EXIFTOOL_PROCESS_CLEANUP_DELAY = "EXIFTOOL_PROCESS_CLEANUP_DELAY"
ENV_EXIFTOOL_RUN_TIMEOUT = "EXIFTOOL_RUN_TIMEOUT"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be an integer number of milliseconds, got {raw!r}") from e


@dataclass(frozen=True)
class ProxySettings:
    """Resolved settings consumed by the proxies.

    Attributes:
        exiftool_path: Command or absolute path of the exiftool executable.
        inactivity_timeout_ms: Idle time before a stay-open process is closed.
        run_timeout_ms: Per-call watchdog duration.
        idle_sweep_interval_ms: Period of the idle eviction sweep.
        max_attempts: Keep-alive attempt budget per call.
        charset: Encoding used on the process streams.

    """

    exiftool_path: str = EXIFTOOL_PATH
    inactivity_timeout_ms: int = EXIFTOOL_PROCESS_CLEANUP_DELAY_MS
    run_timeout_ms: int = EXIFTOOL_RUN_TIMEOUT_MS
    idle_sweep_interval_ms: int = EXIFTOOL_IDLE_SWEEP_INTERVAL_MS
    max_attempts: int = EXIFTOOL_MAX_ATTEMPTS
    charset: str = EXIFTOOL_CHARSET

    @classmethod
    def from_env(cls) -> ProxySettings:
        """Build settings from module defaults and environment overrides."""
        return cls(
            exiftool_path=os.environ.get(ENV_EXIFTOOL_PATH) or EXIFTOOL_PATH,
            inactivity_timeout_ms=_env_int(
                ENV_EXIFTOOL_PROCESS_CLEANUP_DELAY, EXIFTOOL_PROCESS_CLEANUP_DELAY_MS
            ),
            run_timeout_ms=_env_int(ENV_EXIFTOOL_RUN_TIMEOUT, EXIFTOOL_RUN_TIMEOUT_MS),
        )
