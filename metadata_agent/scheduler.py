"""Interval scheduler driving the collect-then-upload cycle."""

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Optional, TextIO

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .collectors.base import BaseCollector
from .errors import CollectorError, QueryFailedError, UploadError
from .payload.models import Payload
from .services.uploader import Uploader
from .utils.metrics import CycleResult
from .utils.status import CycleOutcome, SchedulerState


JOB_ID = "metrics_cycle"


class Scheduler:
    """
    Runs one collection-and-upload cycle per interval on APScheduler.

    The first cycle starts immediately. Cycles never overlap: a tick that
    comes due while a cycle is still running is skipped, not queued. A
    failed cycle is logged and the next tick starts from a clean slate.
    """

    def __init__(
        self,
        collector: BaseCollector,
        uploader: Optional[Uploader],
        interval: float,
        logger: Optional[logging.Logger] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        grace_period: float = 30.0
    ):
        """
        Initialize scheduler.

        Args:
            collector: Long-lived collector built at startup
            uploader: Delivery client (may be None for run_once)
            interval: Seconds between cycle starts
            logger: Optional logger instance
            shutdown_event: Event that requests shutdown when set
            grace_period: Seconds an in-flight cycle may keep running after shutdown
        """
        if interval <= 0:
            raise ValueError("Interval must be positive")

        self.collector = collector
        self.uploader = uploader
        self.interval = float(interval)
        self.logger = (logger or logging.getLogger(__name__)).getChild(self.__class__.__name__)
        self.grace_period = grace_period
        self._shutdown = shutdown_event or asyncio.Event()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight: Optional[asyncio.Future] = None

        self.state = SchedulerState.IDLE
        self.last_result: Optional[CycleResult] = None
        self.cycles_run = 0
        self.skipped_ticks = 0
        self.consecutive_failures = 0

    def request_shutdown(self) -> None:
        """Ask the scheduler to stop; no new cycle starts afterwards."""
        if not self._shutdown.is_set():
            self.logger.info("Shutdown requested")
        self._shutdown.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    @property
    def healthy(self) -> bool:
        """True until a cycle fails; reflects the most recent cycle."""
        return self.last_result is None or self.last_result.outcome.healthy

    async def run(self) -> None:
        """
        Run cycles until shutdown is requested.

        Ticks fire every ``interval`` seconds from the start. Ticks that fall
        while a cycle is in flight are counted in ``skipped_ticks``.
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot start from state {self.state.value}")

        self.state = SchedulerState.RUNNING
        self.logger.info(
            "Starting metrics collection scheduler",
            extra={"interval_secs": self.interval}
        )

        try:
            if not self._shutdown.is_set():
                self._start_scheduler()
                await self._shutdown.wait()
        finally:
            if self._scheduler is not None and self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            await self._finish_in_flight()
            self.state = SchedulerState.STOPPED
            self.logger.info(
                "Scheduler stopped",
                extra={"cycles": self.cycles_run, "skipped_ticks": self.skipped_ticks}
            )

    def _start_scheduler(self) -> None:
        self._scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone=timezone.utc
        )
        self._scheduler.add_listener(
            self._on_tick_skipped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED
        )
        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=self.interval, timezone=timezone.utc),
            id=JOB_ID,
            name="Metrics Collection Cycle",
            max_instances=1,  # Prevent overlapping cycles
            coalesce=True,
            next_run_time=datetime.now(timezone.utc)
        )
        self._scheduler.start()
        self.logger.debug(
            "Next run time: " + str(self._scheduler.get_job(JOB_ID).next_run_time)
        )

    def _on_tick_skipped(self, event: JobEvent) -> None:
        self.skipped_ticks += 1
        self.logger.warning(
            "Previous cycle still running, skipping tick",
            extra={"skipped_ticks": self.skipped_ticks}
        )

    async def _tick(self) -> None:
        """Job body: start a cycle unless shutdown is already under way."""
        if self._shutdown.is_set():
            return

        cycle = asyncio.ensure_future(self.run_cycle())
        self._in_flight = cycle
        try:
            await asyncio.shield(cycle)
        except asyncio.CancelledError:
            # Scheduler shutdown cancels the job; run() owns the cycle from here
            if not self._shutdown.is_set():
                raise

    async def _finish_in_flight(self) -> None:
        """Allow a running cycle the grace period, then abandon it."""
        cycle = self._in_flight
        if cycle is None or cycle.done():
            return

        self.logger.info(
            f"Waiting up to {self.grace_period:.0f}s for the in-flight cycle to finish"
        )
        done, _ = await asyncio.wait({cycle}, timeout=self.grace_period)
        if not done:
            self.logger.warning("Grace period expired, abandoning in-flight cycle")
            cycle.cancel()
            await asyncio.gather(cycle, return_exceptions=True)

    async def run_cycle(self) -> CycleResult:
        """
        Execute one collect-then-upload cycle.

        Never raises for collection or delivery failures; the outcome is
        returned and kept in ``last_result``.
        """
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        self.cycles_run += 1

        self.state = SchedulerState.COLLECTING
        try:
            try:
                payload = await self.collector.collect()
            except Exception as e:
                return self._record_failure(CycleOutcome.COLLECTION_FAILED, e, started_at, start)

            collection_secs = time.monotonic() - start
            self.state = SchedulerState.UPLOADING
            try:
                await self.uploader.send(payload)
            except Exception as e:
                return self._record_failure(
                    CycleOutcome.UPLOAD_FAILED, e, started_at, start, payload.included_sections()
                )

            total_secs = time.monotonic() - start
            result = CycleResult(
                outcome=CycleOutcome.SUCCESS,
                started_at=started_at,
                duration_secs=total_secs,
                sections=payload.included_sections(),
            )
            self.consecutive_failures = 0
            self.last_result = result
            self.logger.info(
                "Metrics cycle completed successfully",
                extra={
                    "cycle": result.to_dict(),
                    "section_count": len(result.sections),
                    "collection_ms": round(collection_secs * 1000),
                    "total_ms": round(total_secs * 1000),
                }
            )
            return result
        finally:
            if self.state is not SchedulerState.STOPPED:
                self.state = SchedulerState.RUNNING

    def _record_failure(
        self,
        outcome: CycleOutcome,
        error: Exception,
        started_at: datetime,
        start: float,
        sections: Optional[list] = None
    ) -> CycleResult:
        """Log a classified failure and keep it as the latest result."""
        result = CycleResult(
            outcome=outcome,
            started_at=started_at,
            duration_secs=time.monotonic() - start,
            sections=sections or [],
            error=str(error),
            error_type=type(error).__name__,
        )
        self.consecutive_failures += 1
        self.last_result = result

        extra = {
            "cycle": result.to_dict(),
            "consecutive_failures": self.consecutive_failures,
        }
        if isinstance(error, QueryFailedError) and error.category:
            extra["category"] = error.category

        expected = isinstance(error, (CollectorError, UploadError))
        self.logger.error(
            f"Metrics cycle failed ({outcome.value}): {error}",
            exc_info=not expected,
            extra=extra
        )
        return result

    async def run_once(self, output: Optional[TextIO] = None) -> Payload:
        """
        Dry run: collect once and print the payload without uploading.

        Args:
            output: Stream to write the JSON to (stdout by default)

        Returns:
            Payload: The collected snapshot

        Raises:
            CollectorError: If collection fails
        """
        self.logger.info("Running single metrics collection (dry-run mode)")
        payload = await self.collector.collect()
        print(payload.to_json(indent=2), file=output or sys.stdout)
        return payload
