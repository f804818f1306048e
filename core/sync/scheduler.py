"""
Periodic sync scheduler.

Runs sync cycles on an asyncio background task: each cycle computes a delta
and hands non-empty deltas to a callback. Cycles never overlap, a failed cycle
never stops the schedule, and no callback fires once ``stop()`` has returned.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..models.storage import OperationResult, OperationStatus
from ..models.tree import SyncDelta

logger = logging.getLogger(__name__)

ComputeDelta = Callable[[], Awaitable[SyncDelta]]
DeltaCallback = Callable[[SyncDelta], Any]


class TaskStatus(Enum):
    """Status of the sync scheduler."""
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class SchedulerMetrics:
    """Metrics for sync cycle execution."""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    consecutive_failures: int = 0
    deltas_delivered: int = 0
    deltas_dropped: int = 0
    last_run_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_failure_time: Optional[datetime] = None
    last_execution_duration_seconds: float = 0.0
    average_execution_time_seconds: float = 0.0
    total_execution_time_seconds: float = 0.0

    def _record_run(self, execution_time: float) -> None:
        self.total_runs += 1
        self.last_run_time = datetime.now()
        self.last_execution_duration_seconds = execution_time
        self.total_execution_time_seconds += execution_time
        self.average_execution_time_seconds = self.total_execution_time_seconds / self.total_runs

    def update_success(self, execution_time: float) -> None:
        """Update metrics for successful run."""
        self._record_run(execution_time)
        self.successful_runs += 1
        self.consecutive_failures = 0
        self.last_success_time = self.last_run_time

    def update_failure(self, execution_time: float) -> None:
        """Update metrics for failed run."""
        self._record_run(execution_time)
        self.failed_runs += 1
        self.consecutive_failures += 1
        self.last_failure_time = self.last_run_time

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage."""
        if self.total_runs == 0:
            return 0.0
        return (self.successful_runs / self.total_runs) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "consecutive_failures": self.consecutive_failures,
            "deltas_delivered": self.deltas_delivered,
            "deltas_dropped": self.deltas_dropped,
            "success_rate_percent": self.success_rate,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_success_time": self.last_success_time.isoformat() if self.last_success_time else None,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_execution_duration_seconds": self.last_execution_duration_seconds,
            "average_execution_time_seconds": self.average_execution_time_seconds,
            "total_execution_time_seconds": self.total_execution_time_seconds
        }


class PeriodicSyncScheduler:
    """
    Asyncio-based periodic scheduler for sync cycles.

    A single background task runs cycles back to back; the interval is measured
    from the end of one cycle to the start of the next. Manual runs via
    ``trigger_immediate_run`` share the same cycle lock.
    """

    def __init__(
        self,
        compute_delta: ComputeDelta,
        interval_ms: int = 180_000,
        initial_delay_ms: Optional[int] = None
    ):
        """
        Initialize scheduler.

        Args:
            compute_delta: Coroutine function producing the delta of one cycle
            interval_ms: Pause between cycles in milliseconds
            initial_delay_ms: Pause before the first cycle, one interval if None
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if initial_delay_ms is not None and initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must not be negative")

        self.compute_delta = compute_delta
        self.interval_ms = interval_ms
        self.initial_delay_ms = interval_ms if initial_delay_ms is None else initial_delay_ms

        self.status = TaskStatus.STOPPED
        self._callback: Optional[DeltaCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        self.metrics = SchedulerMetrics()
        self._last_error: Optional[str] = None
        self._start_time: Optional[datetime] = None
        self._next_run_time: Optional[datetime] = None

        self._lifecycle_lock = asyncio.Lock()
        self._cycle_lock = asyncio.Lock()
        self._cycle_owner: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.status == TaskStatus.RUNNING

    async def start(self, callback: DeltaCallback) -> bool:
        """
        Start periodic cycles.

        Args:
            callback: Receives every non-empty delta; may be sync or async

        Returns:
            True if started, False if already running
        """
        async with self._lifecycle_lock:
            if self.status != TaskStatus.STOPPED:
                logger.warning(f"Sync scheduler is already {self.status.value}")
                return False

            self._callback = callback
            self._shutdown_event.clear()
            self.status = TaskStatus.RUNNING
            self._start_time = datetime.now()
            self._task = asyncio.create_task(self._run_periodic_task())

            logger.info(
                f"Started sync scheduler (interval: {self.interval_ms}ms, "
                f"initial_delay: {self.initial_delay_ms}ms)"
            )
            return True

    async def stop(self) -> None:
        """Stop cycles; no callback fires after this returns."""
        async with self._lifecycle_lock:
            if self.status == TaskStatus.STOPPED:
                logger.debug("Sync scheduler is already stopped")
                return

            # State first so an in-flight cycle drops its result
            self.status = TaskStatus.STOPPED
            self._shutdown_event.set()

            current = asyncio.current_task()
            if self._task and self._task is not current and not self._task.done():
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    logger.debug("Background sync task cancelled")
            self._task = None
            self._next_run_time = None

            # Wait out a manual run that is still delivering, unless stop()
            # was called from inside that run's callback
            if self._cycle_owner is not current:
                async with self._cycle_lock:
                    pass

            logger.info("Sync scheduler stopped")

    async def trigger_immediate_run(self) -> OperationResult[SyncDelta]:
        """
        Run one cycle now, outside the regular schedule.

        Returns:
            Result wrapping the computed delta, or the error of a failed cycle
        """
        if self.status == TaskStatus.STOPPED:
            return OperationResult.error_result(
                "Scheduler is not running", "sync_cycle", status=OperationStatus.CANCELLED
            )

        logger.info("Triggering immediate sync cycle...")
        start_time = time.perf_counter()

        try:
            delta = await self._run_cycle()
        except Exception as e:
            execution_time = time.perf_counter() - start_time
            self._record_failure(e, execution_time)
            return OperationResult.error_result(
                f"Sync cycle failed: {e}", "sync_cycle",
                processing_time_ms=execution_time * 1000
            )

        execution_time = time.perf_counter() - start_time
        self.metrics.update_success(execution_time)
        return OperationResult.success_result(
            delta, "sync_cycle",
            processing_time_ms=execution_time * 1000,
            items_processed=delta.total_changes
        )

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status and metrics."""
        return {
            "status": self.status.value,
            "interval_ms": self.interval_ms,
            "initial_delay_ms": self.initial_delay_ms,
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "next_run_time": self._next_run_time.isoformat() if self._next_run_time else None,
            "last_error": self._last_error,
            "metrics": self.metrics.to_dict()
        }

    async def _run_periodic_task(self) -> None:
        """Main background loop."""
        delay_ms = self.initial_delay_ms

        while self.status == TaskStatus.RUNNING:
            self._next_run_time = datetime.now() + timedelta(milliseconds=delay_ms)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay_ms / 1000.0)
                # Shutdown requested during the wait
                break
            except asyncio.TimeoutError:
                pass

            delay_ms = self.interval_ms
            start_time = time.perf_counter()
            try:
                await self._run_cycle()
                self.metrics.update_success(time.perf_counter() - start_time)
            except Exception as e:
                self._record_failure(e, time.perf_counter() - start_time)

    async def _run_cycle(self) -> SyncDelta:
        async with self._cycle_lock:
            self._cycle_owner = asyncio.current_task()
            try:
                return await self._compute_and_deliver()
            finally:
                self._cycle_owner = None

    async def _compute_and_deliver(self) -> SyncDelta:
        delta = await self.compute_delta()

        if delta.is_empty:
            logger.debug(f"Sync cycle found no changes ({delta.unchanged} unchanged)")
            return delta

        if self.status != TaskStatus.RUNNING or self._callback is None:
            self.metrics.deltas_dropped += 1
            logger.debug(f"Dropping delta with {delta.total_changes} changes after stop")
            return delta

        logger.info(
            f"Delivering delta: {len(delta.added)} added, {len(delta.modified)} modified, "
            f"{len(delta.deleted)} deleted"
        )
        result = self._callback(delta)
        if inspect.isawaitable(result):
            await result
        self.metrics.deltas_delivered += 1
        return delta

    def _record_failure(self, error: Exception, execution_time: float) -> None:
        self.metrics.update_failure(execution_time)
        self._last_error = f"Sync cycle failed: {error}"
        logger.error(self._last_error)
