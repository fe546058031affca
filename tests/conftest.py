"""
Module: conftest.py

Date: 2026-10-19

Global pytest configuration and fixtures for the exifproxy test suite.

The fake_exiftool fixture writes a small executable wrapper around
tests/fixtures/fake_exiftool.py, so the proxies can spawn it exactly like
the real exiftool binary.
"""

from __future__ import annotations

import os
import stat
import sys
import time
from pathlib import Path

import pytest

from exifproxy.infra.external.process_registry import ProcessRegistry
from exifproxy.utils.logging.logger_factory import LoggerFactory
from exifproxy.utils.shared.external_tools import is_tool_available

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_EXIFTOOL_SCRIPT = FIXTURES_DIR / "fake_exiftool.py"


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers if not already added via pyproject.toml
    config.addinivalue_line("markers", "exiftool: test needs the real exiftool executable")
    config.addinivalue_line("markers", "slow: test waits on timers or process teardown")


def pytest_collection_modifyitems(session, config, items):
    """Skip tests marked 'exiftool' when the tool is not installed."""
    _ = session
    _ = config

    if is_tool_available():
        return

    skip_exiftool = pytest.mark.skip(reason="exiftool not installed")
    for item in items:
        if "exiftool" in item.keywords:
            item.add_marker(skip_exiftool)


class FakeExifTool:
    """Paths and recorded activity of one fake exiftool installation."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.path = root / "exiftool"
        self.input_log = root / "stdin.log"
        self.spawn_log = root / "spawns.log"

    def input_lines(self) -> list[tuple[str, str]]:
        """(pid, line) pairs read from stdin, in arrival order."""
        if not self.input_log.exists():
            return []
        pairs = []
        for entry in self.input_log.read_text(encoding="utf-8").splitlines():
            pid, _, line = entry.partition(" ")
            pairs.append((pid, line))
        return pairs

    def spawned_pids(self) -> list[str]:
        if not self.spawn_log.exists():
            return []
        return self.spawn_log.read_text(encoding="utf-8").split()

    @property
    def spawn_count(self) -> int:
        return len(self.spawned_pids())


@pytest.fixture
def fake_exiftool(tmp_path, monkeypatch) -> FakeExifTool:
    """Executable fake exiftool recording its stdin and spawns."""
    if sys.platform == "win32":
        pytest.skip("fake exiftool wrapper is a POSIX shell script")

    fake = FakeExifTool(tmp_path)
    fake.path.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_EXIFTOOL_SCRIPT}" "$@"\n',
        encoding="utf-8",
    )
    fake.path.chmod(fake.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    monkeypatch.setenv("FAKE_EXIFTOOL_LOG", str(fake.input_log))
    monkeypatch.setenv("FAKE_EXIFTOOL_SPAWNS", str(fake.spawn_log))
    monkeypatch.delenv("FAKE_EXIFTOOL_MODE", raising=False)
    return fake


@pytest.fixture
def registry():
    """Private process registry; anything left open is closed afterwards."""
    reg = ProcessRegistry()
    yield reg
    reg.close_all()


@pytest.fixture(autouse=True)
def _reset_global_registry():
    """Drop the global registry between tests so exit hooks do not pile up."""
    yield
    instance = ProcessRegistry._instance
    if instance is not None:
        instance.close_all()
    ProcessRegistry.reset_instance()


@pytest.fixture
def clean_logger_factory():
    LoggerFactory.clear_cache()
    yield
    LoggerFactory.clear_cache()


@pytest.fixture
def image_file(tmp_path) -> Path:
    """A file path for the fake exiftool to 'read'."""
    path = tmp_path / "img.jpg"
    path.write_bytes(b"\xff\xd8\xff\xd9")
    return path


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.02) -> bool:
    """Poll predicate until it returns true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return wait_until


@pytest.fixture
def environ_without_exiftool_overrides(monkeypatch):
    for name in ("EXIFTOOL_PATH", "EXIFTOOL_PROCESS_CLEANUP_DELAY", "EXIFTOOL_RUN_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return os.environ
