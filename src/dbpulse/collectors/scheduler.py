"""Collection scheduler driving the collect -> upload cycle.

This module provides the scheduler that turns a single collection into a
periodic background job.

Key features:
- Random startup jitter so restarted agents don't hit the endpoint together
- An immediate first cycle, then one cycle per interval
- Missed ticks are skipped rather than queued; cycles never overlap
- Cycle failures are logged and absorbed, never ending the loop
- Prompt shutdown between cycles via ShutdownSignal
- A run-once mode for dry runs that never touches the uploader
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import random
import sys
import time
from typing import TextIO

from dbpulse import sentry
from dbpulse.collectors.base import Collector, CollectorError
from dbpulse.collectors.shutdown import ShutdownSignal
from dbpulse.formatters import PayloadFormatter
from dbpulse.uploader import Uploader, UploaderError

logger = logging.getLogger(__name__)

DEFAULT_MAX_JITTER = 5.0


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class SchedulerError(Exception):
    """Raised for conditions the caller must handle.

    Ordinary cycle failures are never raised from run(); this covers misuse
    (starting a scheduler twice) and failed one-shot runs.
    """


@dataclass
class CycleResult:
    """Outcome of one collect+upload cycle.

    Attributes:
        success: Whether the payload was collected and delivered
        stage: "collect" or "upload" where the cycle failed, "done" on success
        error: Error text for failed cycles
        collection_ms: Time spent in the collector (None if it failed)
        duration_ms: Total cycle time in milliseconds
        timestamp: When the cycle started
    """

    success: bool
    stage: str
    error: str | None = None
    collection_ms: float | None = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class SchedulerStats:
    """Statistics about the scheduler's state and performance.

    Attributes:
        running: Whether run() is currently active
        cycles_total: Number of cycles executed
        cycles_succeeded: Cycles that delivered a payload
        collect_failures: Cycles that failed in the collector
        upload_failures: Cycles that failed in the uploader
        last_cycle: When the most recent cycle started
        last_success: When the most recent successful cycle started
        average_cycle_ms: Average cycle time in milliseconds
    """

    running: bool = False
    cycles_total: int = 0
    cycles_succeeded: int = 0
    collect_failures: int = 0
    upload_failures: int = 0
    last_cycle: datetime | None = None
    last_success: datetime | None = None
    average_cycle_ms: float = 0.0


class Scheduler:
    """Runs collector.collect() and uploader.upload() on a fixed period.

    One scheduler drives one collector and one uploader. Both are shared
    references; the scheduler never closes them.

    Example:
        shutdown = ShutdownSignal()
        scheduler = Scheduler(collector, uploader, interval=60.0, shutdown=shutdown)
        await scheduler.run()  # returns once shutdown is set
    """

    def __init__(
        self,
        collector: Collector,
        uploader: Uploader | None,
        interval: float,
        shutdown: ShutdownSignal,
        max_jitter: float = DEFAULT_MAX_JITTER,
    ) -> None:
        """Initialize the scheduler.

        Args:
            collector: Source of payloads
            uploader: Destination for payloads (may be None for run_once only)
            interval: Seconds between cycle starts
            shutdown: Signal that ends run()
            max_jitter: Upper bound in seconds for the startup delay

        Raises:
            ValueError: If interval is not positive or max_jitter is negative
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if max_jitter < 0:
            raise ValueError(f"max_jitter must not be negative, got {max_jitter}")

        self._collector = collector
        self._uploader = uploader
        self._interval = interval
        self._shutdown = shutdown
        self._max_jitter = max_jitter
        self._formatter = PayloadFormatter(pretty_print=True)
        self._running = False
        self._stats = SchedulerStats()

        # Latency tracking
        self._latencies: list[float] = []
        self._max_latency_samples = 1000

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        """Check if run() is active."""
        return self._running

    @property
    def stats(self) -> SchedulerStats:
        """Get a snapshot of scheduler statistics."""
        avg = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return SchedulerStats(
            running=self._running,
            cycles_total=self._stats.cycles_total,
            cycles_succeeded=self._stats.cycles_succeeded,
            collect_failures=self._stats.collect_failures,
            upload_failures=self._stats.upload_failures,
            last_cycle=self._stats.last_cycle,
            last_success=self._stats.last_success,
            average_cycle_ms=avg,
        )

    def _jitter(self) -> float:
        if self._max_jitter == 0:
            return 0.0
        return random.uniform(0, self._max_jitter)

    async def run(self) -> None:
        """Run cycles until the shutdown signal is set.

        Sleeps for a random startup jitter, runs the first cycle right away,
        then one cycle per interval. A tick that passes while a cycle is
        still running is skipped, and the schedule restarts from the end of
        that cycle. Shutdown is observed between cycles; an in-flight cycle
        always runs to completion.

        Raises:
            SchedulerError: If the scheduler is already running
        """
        if self._running:
            raise SchedulerError("Scheduler is already running")

        self._running = True
        try:
            await self._run_loop()
        finally:
            self._running = False

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()

        jitter = self._jitter()
        logger.info(
            "Scheduler starting (interval %gs, startup jitter %.2fs)",
            self._interval,
            jitter,
        )
        if await self._shutdown.wait(jitter):
            logger.info("Shutdown requested before first cycle")
            return

        next_tick = loop.time()
        while True:
            remaining = next_tick - loop.time()
            if remaining > 0:
                if await self._shutdown.wait(remaining):
                    break
            elif self._shutdown.is_set:
                break

            tick_started = loop.time()
            next_tick += self._interval
            if next_tick <= tick_started:
                # Missed while the previous cycle ran; restart the schedule
                next_tick = tick_started + self._interval

            try:
                await self.collect_and_upload()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error in collection cycle")

        logger.info("Scheduler stopped after %d cycles", self._stats.cycles_total)

    async def collect_and_upload(self) -> CycleResult:
        """Run one collection and upload the result.

        Collector and uploader failures are logged and reported in the
        returned CycleResult rather than raised.

        Returns:
            CycleResult describing the cycle
        """
        started = time.monotonic()
        result = CycleResult(success=False, stage="collect")
        self._stats.cycles_total += 1
        self._stats.last_cycle = result.timestamp

        sentry.add_breadcrumb("Collection cycle started", category="scheduler")

        try:
            payload = await self._collector.tracked_collect()
        except CollectorError as e:
            self._stats.collect_failures += 1
            result.error = str(e)
            logger.error("Collection failed (%s): %s", e.kind, e)
            sentry.capture_cycle_error("collect", e, extra={"kind": e.kind})
            return self._finish(result, started)

        result.collection_ms = (time.monotonic() - started) * 1000
        result.stage = "upload"

        if self._uploader is None:
            self._stats.upload_failures += 1
            result.error = "No uploader configured"
            logger.error("Upload skipped: no uploader configured")
            return self._finish(result, started)

        try:
            await self._uploader.upload(payload)
        except UploaderError as e:
            self._stats.upload_failures += 1
            result.error = str(e)
            logger.error("Upload failed: %s", e)
            sentry.capture_cycle_error("upload", e)
            return self._finish(result, started)
        except Exception as e:
            self._stats.upload_failures += 1
            result.error = f"{type(e).__name__}: {e}"
            logger.exception("Unexpected error during upload")
            sentry.capture_cycle_error("upload", e)
            return self._finish(result, started)

        result.success = True
        result.stage = "done"
        self._stats.cycles_succeeded += 1
        self._stats.last_success = result.timestamp
        result = self._finish(result, started)

        logger.info(
            "Metrics collected in %.0fms, cycle completed in %.0fms",
            result.collection_ms,
            result.duration_ms,
        )
        return result

    def _finish(self, result: CycleResult, started: float) -> CycleResult:
        result.duration_ms = (time.monotonic() - started) * 1000

        self._latencies.append(result.duration_ms)
        if len(self._latencies) > self._max_latency_samples:
            self._latencies = self._latencies[-self._max_latency_samples :]

        sentry.record_cycle(
            success=result.success,
            stage=result.stage,
            duration_ms=result.duration_ms,
            collection_ms=result.collection_ms,
        )
        return result

    async def run_once(self, out: TextIO | None = None) -> None:
        """Collect once and print the payload without uploading it.

        Args:
            out: Stream to write the payload to (default: stdout)

        Raises:
            SchedulerError: If collection or formatting failed
        """
        stream = out if out is not None else sys.stdout

        logger.info("Running single collection (dry run)")
        try:
            payload = await self._collector.tracked_collect()
        except CollectorError as e:
            logger.error("Collection failed (%s): %s", e.kind, e)
            raise SchedulerError(f"Collection failed: {e}") from e

        try:
            text = self._formatter.format(payload)
        except (TypeError, ValueError) as e:
            raise SchedulerError(f"Could not format payload: {e}") from e

        stream.write(text)
        stream.write("\n")
        stream.flush()
