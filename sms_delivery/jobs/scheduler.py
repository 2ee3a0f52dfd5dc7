"""
Recurring Job Scheduler

Runs maintenance jobs (recurring broadcasts, linking-recovery sweeps,
archival, billing cycles) on a fixed interval in every process, always
through DistributedJobLock.with_lock, so a horizontally scaled deployment
executes each job name at most once at a time.

Flow per job:
    1. Wait for the job interval (or stop)
    2. with_lock(job.name, job.fn, job.lock_ttl_ms)
    3. Lock held elsewhere -> skip this tick
    4. Job raised -> log, keep the loop alive
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sms_delivery.core.config.constants import Stage
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.job_lock import DistributedJobLock

logger = get_logger(__name__)


@dataclass
class RecurringJob:
    """
    A named job run every `interval_seconds`.

    Attributes:
        name: Unique job name, also the lock name
        interval_seconds: Delay between runs
        fn: Coroutine function doing the work
        lock_ttl_ms: Lock expiry; must outlast a normal run
        run_immediately: Run once at start instead of waiting a full interval
    """

    name: str
    interval_seconds: float
    fn: Callable[[], Awaitable[Any]]
    lock_ttl_ms: int | None = None
    run_immediately: bool = False

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")


@dataclass
class JobRun:
    """Outcome of one scheduler tick."""

    job: str
    ran: bool
    succeeded: bool
    result: Any = None
    error: str | None = None
    duration_seconds: float = 0.0


class JobScheduler:
    """
    Interval scheduler with cross-process de-duplication.

    Usage:
        scheduler = JobScheduler(DistributedJobLock(store))
        scheduler.register(RecurringJob("recurring-messages", 60, send_due_messages))
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, lock: DistributedJobLock, metrics=None):
        self._lock = lock
        self._metrics = metrics
        self._jobs: dict[str, RecurringJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()

    @property
    def jobs(self) -> list[str]:
        return list(self._jobs)

    def register(self, job: RecurringJob) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Job already registered: {job.name}")
        self._jobs[job.name] = job
        if self._tasks:
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"job-{job.name}")

    async def run_once(self, name: str) -> JobRun:
        """
        Run a registered job now, under its lock.

        STAGE-JOB.1: Job execution

        Raises:
            KeyError: Unknown job name
        """
        job = self._jobs[name]
        start = time.perf_counter()
        ran = False

        async def invoke():
            nonlocal ran
            ran = True
            return await job.fn()

        try:
            result = await self._lock.with_lock(job.name, invoke, job.lock_ttl_ms)
        except Exception as e:
            duration = time.perf_counter() - start
            logger.error(
                "Recurring job failed",
                stage=Stage.SCHEDULER.value,
                job=job.name,
                error=str(e),
                exc_info=True,
            )
            self._record(job.name, "failed", duration)
            return JobRun(job=job.name, ran=True, succeeded=False, error=str(e), duration_seconds=duration)

        duration = time.perf_counter() - start
        if not ran:
            logger.info("Skipped job run, lock not acquired", stage="JOB.1", job=job.name)
            return JobRun(job=job.name, ran=False, succeeded=False, duration_seconds=duration)

        logger.info("Recurring job completed", stage="JOB.1", job=job.name, duration=round(duration, 3))
        self._record(job.name, "completed", duration)
        return JobRun(job=job.name, ran=True, succeeded=True, result=result, duration_seconds=duration)

    def _record(self, job: str, status: str, duration: float) -> None:
        if self._metrics is not None:
            self._metrics.record_job_duration(job, status, duration)

    async def start(self) -> None:
        """Start one loop per registered job (idempotent)."""
        if self._tasks:
            return
        self._shutdown_event.clear()
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"job-{job.name}")
        logger.info("Job scheduler started", stage="JOB.0", jobs=self.jobs)

    async def stop(self) -> None:
        """Stop every loop; a run in progress is cancelled."""
        self._shutdown_event.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = {}
        logger.info("Job scheduler stopped", stage="JOB.0")

    async def _wait(self, seconds: float) -> bool:
        """Sleep `seconds` unless stopped first. Returns False on stop."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _loop(self, job: RecurringJob) -> None:
        """
        STAGE-JOB.2: Job loop
        """
        if not job.run_immediately and not await self._wait(job.interval_seconds):
            return
        while not self._shutdown_event.is_set():
            await self.run_once(job.name)
            if not await self._wait(job.interval_seconds):
                return
