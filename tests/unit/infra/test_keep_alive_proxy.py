"""
Tests for KeepAliveExifProxy.

Date: 2026-10-19

Most tests run against the fake exiftool; the retry bound is also checked
with a mocked process factory so the failure count is exact.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from exifproxy.infra.external.errors import (
    CallTimedOut,
    ChannelClosed,
    LaunchFailed,
    ProtocolViolation,
    RetriesExhausted,
    ShuttingDown,
    ToolReportedError,
)
from exifproxy.infra.external.exiftool_process import ExifToolProcess
from exifproxy.infra.external.keep_alive_proxy import KeepAliveExifProxy
from exifproxy.services.interfaces import ExifProxyProtocol


@pytest.fixture
def make_proxy(fake_exiftool, registry):
    created: list[KeepAliveExifProxy] = []

    def make(**kwargs) -> KeepAliveExifProxy:
        kwargs.setdefault("inactivity_timeout_ms", 0)
        proxy = KeepAliveExifProxy(str(fake_exiftool.path), registry=registry, **kwargs)
        created.append(proxy)
        return proxy

    yield make
    for proxy in created:
        proxy.shutdown()


def _request_blocks(fake_exiftool) -> list[list[str]]:
    """Split the recorded stdin into requests terminated by -execute."""
    blocks: list[list[str]] = []
    current: list[str] = []
    for _, line in fake_exiftool.input_lines():
        if line == "-execute":
            blocks.append(current)
            current = []
        else:
            current.append(line)
    return blocks


def _failing_handle(error: Exception) -> MagicMock:
    handle = MagicMock(spec=ExifToolProcess)
    handle.identity = "mock"
    handle.closed = False
    handle.is_alive.return_value = True
    handle.send_and_await.side_effect = error
    return handle


class TestExecute:
    """Tests for calls on a healthy process."""

    def test_satisfies_proxy_protocol(self, make_proxy) -> None:
        assert isinstance(make_proxy(), ExifProxyProtocol)

    def test_example_request(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        assert proxy.execute(0, ["-n", "-S", "-FileSize", "img.jpg"]) == ["FileSize: 1024"]
        assert _request_blocks(fake_exiftool) == [["-n", "-S", "-FileSize", "img.jpg"]]

    def test_process_is_started_lazily_and_reused(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        assert not proxy.is_running()
        assert fake_exiftool.spawn_count == 0

        for _ in range(3):
            proxy.execute(0, ["-ver"])

        assert proxy.is_running()
        assert fake_exiftool.spawn_count == 1

    def test_startup_spawns_eagerly(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.startup()
        assert proxy.is_running()
        proxy.startup()
        assert fake_exiftool.spawn_count == 1

    def test_base_args_are_on_the_command_line(self, make_proxy) -> None:
        proxy = make_proxy(base_args=["-use", "MWG"])
        assert proxy.command[3:5] == ["-use", "MWG"]
        assert proxy.command[-2:] == ["-@", "-"]

    def test_tool_error_fails_only_that_call(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        with pytest.raises(ToolReportedError, match="Error: bad tag"):
            proxy.execute(0, ["-FAKE_ERROR", "img.jpg"])

        assert proxy.execute(0, ["-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 1

    def test_calls_are_serialized(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        results: dict[int, list[str]] = {}
        errors: list[BaseException] = []

        def call(n: int) -> None:
            try:
                results[n] = proxy.execute(0, ["-FAKE_SLEEP=10", f"-FAKE_LINES={n}", f"t{n}.jpg"])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=call, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10.0)

        assert errors == []
        for n, lines in results.items():
            assert lines == [f"Line{i}: value{i}" for i in range(n)]
        blocks = _request_blocks(fake_exiftool)
        assert len(blocks) == 8
        for block in blocks:
            n = int(block[1].split("=", 1)[1])
            assert block == ["-FAKE_SLEEP=10", f"-FAKE_LINES={n}", f"t{n}.jpg"]
        assert fake_exiftool.spawn_count == 1


class TestRecovery:
    """Tests for restart and retry behavior."""

    def test_dead_process_is_replaced_between_calls(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.execute(0, ["-ver"])
        proxy._process.process.kill()
        proxy._process.process.wait(5)

        assert proxy.execute(0, ["-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 2

    def test_stdout_closed_by_live_process_is_not_retried(
        self, make_proxy, fake_exiftool
    ) -> None:
        proxy = make_proxy()
        with pytest.raises(ProtocolViolation):
            proxy.execute(0, ["-FAKE_CLOSE_STDOUT"])
        assert fake_exiftool.spawn_count == 1

        assert proxy.execute(0, ["-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 2

    def test_process_dying_mid_call_is_retried_to_the_bound(
        self, make_proxy, fake_exiftool
    ) -> None:
        proxy = make_proxy()
        with pytest.raises(RetriesExhausted) as exc_info:
            proxy.execute(0, ["-FAKE_DIE"])

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ChannelClosed)
        assert fake_exiftool.spawn_count == 3

    def test_process_that_dies_at_start_exhausts_retries(
        self, make_proxy, fake_exiftool, registry, monkeypatch
    ) -> None:
        monkeypatch.setenv("FAKE_EXIFTOOL_MODE", "die")
        proxy = make_proxy()
        with pytest.raises(RetriesExhausted):
            proxy.execute(0, ["-ver"])

        assert fake_exiftool.spawn_count == 3
        assert len(registry) == 0
        assert not proxy.is_running()

    def test_recovers_when_a_restart_succeeds(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.execute(0, ["-ver"])
        proxy._process.process.kill()

        # the kill may not be visible yet when the request is written
        assert proxy.execute(0, ["-FileSize", "img.jpg"]) == ["FileSize: 1024"]
        assert fake_exiftool.spawn_count == 2

    def test_retry_bound(self) -> None:
        factory = MagicMock(side_effect=lambda *a, **kw: _failing_handle(ChannelClosed()))
        proxy = KeepAliveExifProxy("exiftool", inactivity_timeout_ms=0, process_factory=factory)
        try:
            with pytest.raises(RetriesExhausted) as exc_info:
                proxy.execute(0, ["-ver"])
        finally:
            proxy.shutdown()

        assert factory.call_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ChannelClosed)
        assert proxy.health_check()["consecutive_failures"] == 3

    def test_recovers_within_attempts(self) -> None:
        good = MagicMock(spec=ExifToolProcess)
        good.identity = "good"
        good.closed = False
        good.is_alive.return_value = True
        good.send_and_await.return_value = ["ok"]
        handles = iter([_failing_handle(ChannelClosed()), good])
        factory = MagicMock(side_effect=lambda *a, **kw: next(handles))

        proxy = KeepAliveExifProxy("exiftool", inactivity_timeout_ms=0, process_factory=factory)
        try:
            assert proxy.execute(0, ["-ver"]) == ["ok"]
        finally:
            proxy.shutdown()
        assert factory.call_count == 2
        assert proxy.health_check()["consecutive_failures"] == 0

    def test_factory_call_shape(self) -> None:
        factory = MagicMock(side_effect=lambda *a, **kw: _failing_handle(ChannelClosed()))
        proxy = KeepAliveExifProxy(
            "exiftool", inactivity_timeout_ms=0, max_attempts=1, process_factory=factory
        )
        try:
            with pytest.raises(RetriesExhausted):
                proxy.execute(0, ["-ver"])
        finally:
            proxy.shutdown()

        factory.assert_called_once_with(
            proxy.command, keep_alive=True, charset=proxy.charset, registry=None
        )

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            KeepAliveExifProxy("exiftool", max_attempts=0)

    def test_launch_failure(self, tmp_path, registry) -> None:
        proxy = KeepAliveExifProxy(str(tmp_path / "missing"), registry=registry)
        try:
            with pytest.raises(LaunchFailed):
                proxy.execute(0, ["-ver"])
        finally:
            proxy.shutdown()


@pytest.mark.slow
class TestTimers:
    """Tests for the watchdog and the idle sweep."""

    def test_hung_call_times_out_and_is_not_retried(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.startup()
        popen = proxy._process.process
        start = time.monotonic()
        with pytest.raises(CallTimedOut) as exc_info:
            proxy.execute(300, ["-FAKE_HANG"])
        elapsed = time.monotonic() - start

        assert exc_info.value.timeout_ms == 300
        assert elapsed < 3.0
        assert fake_exiftool.spawn_count == 1
        assert not proxy.is_running()
        assert popen.poll() is not None

        assert proxy.execute(300, ["-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 2

    def test_fast_call_disarms_watchdog(self, make_proxy) -> None:
        proxy = make_proxy()
        assert proxy.execute(200, ["-ver"]) == ["12.40"]
        time.sleep(0.4)
        assert proxy.is_running()

    def test_idle_process_is_closed_and_restarted(
        self, make_proxy, fake_exiftool, wait_for
    ) -> None:
        proxy = make_proxy(inactivity_timeout_ms=200, idle_sweep_interval_ms=50)
        proxy.execute(0, ["-ver"])
        assert proxy.is_running()

        assert wait_for(lambda: not proxy.is_running(), timeout=3.0)
        assert not proxy.shutting_down

        assert proxy.execute(0, ["-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 2

    def test_busy_process_is_not_idle(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy(inactivity_timeout_ms=100, idle_sweep_interval_ms=20)
        assert proxy.execute(0, ["-FAKE_SLEEP=400", "-ver"]) == ["12.40"]
        assert fake_exiftool.spawn_count == 1


class TestShutdown:
    """Tests for the terminal shutdown state."""

    def test_calls_after_shutdown_fail_without_spawning(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.execute(0, ["-ver"])
        proxy.shutdown()

        assert proxy.shutting_down
        assert not proxy.is_running()
        with pytest.raises(ShuttingDown):
            proxy.execute(0, ["-ver"])
        with pytest.raises(ShuttingDown):
            proxy.startup()
        assert fake_exiftool.spawn_count == 1

    def test_shutdown_sends_stay_open_false(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        proxy.execute(0, ["-ver"])
        proxy.shutdown()
        sent = [line for _, line in fake_exiftool.input_lines()]
        assert sent[-2:] == ["-stay_open", "False"]

    def test_shutdown_is_idempotent(self, make_proxy) -> None:
        proxy = make_proxy()
        proxy.shutdown()
        proxy.shutdown()
        assert proxy.shutting_down

    def test_context_manager_shuts_down(self, make_proxy) -> None:
        with make_proxy() as proxy:
            proxy.execute(0, ["-ver"])
        assert proxy.shutting_down

    @pytest.mark.slow
    def test_concurrent_shutdown_fails_in_flight_call(self, make_proxy, fake_exiftool) -> None:
        proxy = make_proxy()
        errors: list[BaseException] = []

        def call() -> None:
            try:
                proxy.execute(0, ["-FAKE_HANG"])
            except Exception as e:
                errors.append(e)

        caller = threading.Thread(target=call)
        caller.start()
        caller.join(0.3)
        assert caller.is_alive()

        proxy.shutdown()
        caller.join(5.0)

        assert not caller.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], ShuttingDown)
        assert fake_exiftool.spawn_count == 1


class TestDiagnostics:
    """Tests for health_check and repr."""

    def test_health_check(self, make_proxy) -> None:
        proxy = make_proxy()
        health = proxy.health_check()
        assert health["running"] is False
        assert health["pid"] is None

        proxy.execute(0, ["-ver"])
        health = proxy.health_check()
        assert health["running"] is True
        assert health["pid"] == proxy._process.pid
        assert health["last_call_start"] > 0
        assert health["last_error"] is None

    def test_health_check_records_last_error(self, make_proxy) -> None:
        proxy = make_proxy()
        with pytest.raises(ToolReportedError):
            proxy.execute(0, ["-FAKE_ERROR"])
        health = proxy.health_check()
        assert health["consecutive_failures"] == 1
        assert "bad tag" in health["last_error"]

    def test_repr(self, make_proxy) -> None:
        assert "running=False" in repr(make_proxy())
