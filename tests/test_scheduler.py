"""Tests for the collection scheduler."""

import asyncio
import io
import json
import time
from unittest.mock import AsyncMock, patch

import pytest

from dbpulse.collectors import (
    Collector,
    CollectorConnectionError,
    CycleResult,
    InternalCollectorError,
    QueryError,
    Scheduler,
    SchedulerError,
    ShutdownSignal,
)
from dbpulse.models import DatabaseInfo, Payload
from dbpulse.uploader import ServerError, Uploader


def _payload() -> Payload:
    return Payload.create(
        DatabaseInfo(type="postgres", version="16.2"),
        "postgres://localhost/app",
        settings={"max_connections": "100"},
    )


class StubCollector(Collector):
    """Collector returning a fixed payload after an optional delay."""

    name = "stub"

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        super().__init__()
        self.delay = delay
        self.error = error
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def collect(self) -> Payload:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return _payload()
        finally:
            self.active -= 1

    async def test_connection(self) -> None:
        return None

    @property
    def provider(self) -> str:
        return "generic"

    @property
    def version(self) -> str | None:
        return "16.2"


def _uploader() -> AsyncMock:
    return AsyncMock(spec=Uploader)


async def _run_for(scheduler: Scheduler, shutdown: ShutdownSignal, seconds: float) -> float:
    """Run the scheduler, request shutdown after `seconds`, return total run time."""
    loop = asyncio.get_running_loop()
    loop.call_later(seconds, shutdown.set, "test")
    started = time.monotonic()
    await asyncio.wait_for(scheduler.run(), timeout=seconds + 5)
    return time.monotonic() - started


# ============================================================================
# Construction Tests
# ============================================================================


class TestSchedulerInit:
    """Tests for Scheduler construction."""

    def test_rejects_non_positive_interval(self) -> None:
        """Test that a zero interval is rejected."""
        with pytest.raises(ValueError, match="interval"):
            Scheduler(StubCollector(), _uploader(), interval=0, shutdown=ShutdownSignal())

    def test_rejects_negative_jitter(self) -> None:
        """Test that negative jitter is rejected."""
        with pytest.raises(ValueError, match="jitter"):
            Scheduler(
                StubCollector(),
                _uploader(),
                interval=10,
                shutdown=ShutdownSignal(),
                max_jitter=-1,
            )

    def test_initial_state(self) -> None:
        """Test a new scheduler is idle with empty stats."""
        scheduler = Scheduler(StubCollector(), _uploader(), interval=10, shutdown=ShutdownSignal())
        assert scheduler.running is False
        assert scheduler.interval == 10
        assert scheduler.stats.cycles_total == 0


# ============================================================================
# Single Cycle Tests
# ============================================================================


class TestCollectAndUpload:
    """Tests for a single collect+upload cycle."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Test a successful cycle uploads the collected payload."""
        uploader = _uploader()
        scheduler = Scheduler(StubCollector(), uploader, interval=10, shutdown=ShutdownSignal())

        result = await scheduler.collect_and_upload()

        assert isinstance(result, CycleResult)
        assert result.success is True
        assert result.stage == "done"
        assert result.error is None
        assert result.collection_ms is not None
        assert result.duration_ms >= result.collection_ms
        uploader.upload.assert_awaited_once()
        payload = uploader.upload.await_args.args[0]
        assert payload.settings == {"max_connections": "100"}

    @pytest.mark.asyncio
    async def test_collector_failure_skips_upload(self) -> None:
        """Test a collector error ends the cycle without uploading."""
        uploader = _uploader()
        collector = StubCollector(error=QueryError("relation does not exist"))
        scheduler = Scheduler(collector, uploader, interval=10, shutdown=ShutdownSignal())

        result = await scheduler.collect_and_upload()

        assert result.success is False
        assert result.stage == "collect"
        assert "Query execution failed" in (result.error or "")
        uploader.upload.assert_not_awaited()
        assert scheduler.stats.collect_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_collector_exception(self) -> None:
        """Test arbitrary exceptions from collect() are treated as collector errors."""
        collector = StubCollector(error=RuntimeError("driver crashed"))
        scheduler = Scheduler(collector, _uploader(), interval=10, shutdown=ShutdownSignal())

        result = await scheduler.collect_and_upload()

        assert result.stage == "collect"
        assert "RuntimeError: driver crashed" in (result.error or "")

    @pytest.mark.asyncio
    async def test_upload_failure(self) -> None:
        """Test an uploader error is absorbed and reported."""
        uploader = _uploader()
        uploader.upload.side_effect = ServerError(500, "boom")
        scheduler = Scheduler(StubCollector(), uploader, interval=10, shutdown=ShutdownSignal())

        result = await scheduler.collect_and_upload()

        assert result.success is False
        assert result.stage == "upload"
        assert result.error == "Server returned error 500: boom"
        assert scheduler.stats.upload_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_upload_error_recorded(self) -> None:
        """Test a non-uploader exception still counts as a failed upload cycle."""
        uploader = _uploader()
        uploader.upload.side_effect = RuntimeError("bug")
        scheduler = Scheduler(StubCollector(), uploader, interval=10, shutdown=ShutdownSignal())

        with patch("dbpulse.sentry.record_cycle") as record_cycle:
            result = await scheduler.collect_and_upload()

        assert result.success is False
        assert result.stage == "upload"
        assert result.error == "RuntimeError: bug"
        assert scheduler.stats.cycles_total == 1
        assert scheduler.stats.upload_failures == 1
        assert len(scheduler._latencies) == 1
        record_cycle.assert_called_once()
        assert record_cycle.call_args.kwargs["stage"] == "upload"

    @pytest.mark.asyncio
    async def test_stats_accumulate(self) -> None:
        """Test statistics count each cycle outcome."""
        uploader = _uploader()
        collector = StubCollector()
        scheduler = Scheduler(collector, uploader, interval=10, shutdown=ShutdownSignal())

        await scheduler.collect_and_upload()
        collector.error = CollectorConnectionError("connection reset")
        await scheduler.collect_and_upload()

        stats = scheduler.stats
        assert stats.cycles_total == 2
        assert stats.cycles_succeeded == 1
        assert stats.collect_failures == 1
        assert stats.last_success is not None
        assert stats.average_cycle_ms >= 0.0
        assert collector.consecutive_failures == 1


# ============================================================================
# Run Loop Tests
# ============================================================================


class TestSchedulerRun:
    """Tests for the periodic run loop."""

    @pytest.mark.asyncio
    async def test_first_cycle_is_immediate(self) -> None:
        """Test the first cycle runs without waiting an interval."""
        shutdown = ShutdownSignal()
        uploader = _uploader()
        uploader.upload.side_effect = lambda payload: shutdown.set("test")
        collector = StubCollector()
        scheduler = Scheduler(collector, uploader, interval=60, shutdown=shutdown, max_jitter=0)

        started = time.monotonic()
        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert time.monotonic() - started < 1.0
        assert collector.calls == 1

    @pytest.mark.asyncio
    async def test_shutdown_before_start(self) -> None:
        """Test no cycle runs when shutdown was already requested."""
        shutdown = ShutdownSignal()
        shutdown.set()
        collector = StubCollector()
        scheduler = Scheduler(collector, _uploader(), interval=10, shutdown=shutdown, max_jitter=0)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert collector.calls == 0

    @pytest.mark.asyncio
    async def test_shutdown_interrupts_jitter(self) -> None:
        """Test shutdown during the startup delay returns promptly."""
        shutdown = ShutdownSignal()
        collector = StubCollector()
        scheduler = Scheduler(collector, _uploader(), interval=10, shutdown=shutdown, max_jitter=5)

        with patch("dbpulse.collectors.scheduler.random.uniform", return_value=5.0):
            elapsed = await _run_for(scheduler, shutdown, 0.05)

        assert elapsed < 1.0
        assert collector.calls == 0

    @pytest.mark.asyncio
    async def test_jitter_delays_first_cycle(self) -> None:
        """Test the first cycle waits for the startup jitter."""
        shutdown = ShutdownSignal()
        uploader = _uploader()
        uploader.upload.side_effect = lambda payload: shutdown.set("test")
        scheduler = Scheduler(StubCollector(), uploader, interval=10, shutdown=shutdown)

        with patch("dbpulse.collectors.scheduler.random.uniform", return_value=0.2) as uniform:
            started = time.monotonic()
            await asyncio.wait_for(scheduler.run(), timeout=5)

        uniform.assert_called_once_with(0, 5.0)
        assert time.monotonic() - started >= 0.2

    @pytest.mark.asyncio
    async def test_cycles_follow_interval(self) -> None:
        """Test one cycle per interval: ticks at 0, 1, 2 and 3 intervals."""
        shutdown = ShutdownSignal()
        collector = StubCollector(delay=0.01)
        scheduler = Scheduler(collector, _uploader(), interval=0.2, shutdown=shutdown, max_jitter=0)

        await _run_for(scheduler, shutdown, 0.7)

        assert collector.calls == 4

    @pytest.mark.asyncio
    async def test_no_overlapping_cycles(self) -> None:
        """Test a slow collector delays, but never overlaps, the next cycle."""
        shutdown = ShutdownSignal()
        collector = StubCollector(delay=0.15)
        uploader = _uploader()
        scheduler = Scheduler(collector, uploader, interval=0.05, shutdown=shutdown, max_jitter=0)

        await _run_for(scheduler, shutdown, 0.5)

        assert collector.max_active == 1
        # Missed ticks are skipped, not queued: about window / cycle duration
        assert 3 <= collector.calls <= 4
        assert uploader.upload.await_count == collector.calls

    @pytest.mark.asyncio
    async def test_in_flight_cycle_completes(self) -> None:
        """Test shutdown lets the running cycle finish and starts no other."""
        shutdown = ShutdownSignal()
        collector = StubCollector(delay=0.2)
        uploader = _uploader()
        scheduler = Scheduler(collector, uploader, interval=0.05, shutdown=shutdown, max_jitter=0)

        await _run_for(scheduler, shutdown, 0.05)

        assert collector.calls == 1
        uploader.upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_loop(self) -> None:
        """Test failing cycles are absorbed and the loop keeps going."""
        shutdown = ShutdownSignal()
        collector = StubCollector(error=CollectorConnectionError("refused"))
        uploader = _uploader()
        scheduler = Scheduler(collector, uploader, interval=0.05, shutdown=shutdown, max_jitter=0)

        await _run_for(scheduler, shutdown, 0.22)

        assert collector.calls >= 3
        uploader.upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_loop(self) -> None:
        """Test an unexpected exception in a cycle is logged, not raised."""
        shutdown = ShutdownSignal()
        uploader = _uploader()
        uploader.upload.side_effect = RuntimeError("bug")
        collector = StubCollector()
        scheduler = Scheduler(collector, uploader, interval=0.05, shutdown=shutdown, max_jitter=0)

        await _run_for(scheduler, shutdown, 0.12)

        assert collector.calls >= 2

    @pytest.mark.asyncio
    async def test_run_twice_raises(self) -> None:
        """Test starting an already running scheduler raises SchedulerError."""
        shutdown = ShutdownSignal()
        scheduler = Scheduler(StubCollector(), _uploader(), interval=10, shutdown=shutdown, max_jitter=0)

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.01)
        assert scheduler.running is True

        with pytest.raises(SchedulerError, match="already running"):
            await scheduler.run()

        shutdown.set()
        await asyncio.wait_for(task, timeout=5)
        assert scheduler.running is False


# ============================================================================
# Run Once Tests
# ============================================================================


class TestRunOnce:
    """Tests for the dry-run single collection."""

    @pytest.mark.asyncio
    async def test_prints_payload_without_upload(self) -> None:
        """Test run_once writes the payload and never touches the uploader."""
        uploader = _uploader()
        scheduler = Scheduler(StubCollector(), uploader, interval=10, shutdown=ShutdownSignal())
        out = io.StringIO()

        await scheduler.run_once(out)

        document = json.loads(out.getvalue())
        assert document["database"]["type"] == "postgres"
        assert document["settings"] == {"max_connections": "100"}
        assert "\n  " in out.getvalue()  # indented
        uploader.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_prints_to_stdout(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test run_once writes to stdout by default."""
        scheduler = Scheduler(StubCollector(), None, interval=10, shutdown=ShutdownSignal())

        await scheduler.run_once()

        captured = capsys.readouterr()
        assert json.loads(captured.out)["instance_id"]

    @pytest.mark.asyncio
    async def test_collector_failure_raises(self) -> None:
        """Test a collector failure propagates as SchedulerError."""
        error = CollectorConnectionError("timeout")
        scheduler = Scheduler(
            StubCollector(error=error), _uploader(), interval=10, shutdown=ShutdownSignal()
        )

        with pytest.raises(SchedulerError, match="Database connection failed") as exc_info:
            await scheduler.run_once(io.StringIO())

        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_internal_error_chained(self) -> None:
        """Test unexpected collector exceptions are chained through InternalCollectorError."""
        scheduler = Scheduler(
            StubCollector(error=KeyError("x")), None, interval=10, shutdown=ShutdownSignal()
        )

        with pytest.raises(SchedulerError) as exc_info:
            await scheduler.run_once(io.StringIO())

        assert isinstance(exc_info.value.__cause__, InternalCollectorError)
