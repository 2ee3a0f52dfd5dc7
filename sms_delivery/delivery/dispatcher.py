"""
Broadcast Dispatcher

Background broadcasts are handed to an explicit worker pool instead of being
fired as detached, unobserved tasks. Callers get a job id back immediately
and can poll or await the outcome.

Architecture:
    BroadcastDispatcher (Public API)
        ├── asyncio.Queue of BroadcastJob
        └── N worker tasks, each running DeliveryPipeline.deliver_many

Job lifecycle: pending -> running -> completed | failed
"""

import asyncio
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from sms_delivery.core.config.constants import DispatchStatus, Stage
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.logging.logger import bind_delivery_context, clear_delivery_context, get_logger
from sms_delivery.delivery.models import BroadcastResult, DeliveryOptions
from sms_delivery.delivery.pipeline import DeliveryPipeline

logger = get_logger(__name__)


@dataclass
class BroadcastJob:
    """A submitted broadcast and its observable outcome."""

    job_id: str
    message_id: str
    tenant_id: str
    recipients: list[str]
    body: str
    options: DeliveryOptions | None
    submitted_at: float
    status: DispatchStatus = DispatchStatus.PENDING
    started_at: float | None = None
    finished_at: float | None = None
    result: BroadcastResult | None = None
    error: str | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def finished(self) -> bool:
        return self.status in (DispatchStatus.COMPLETED, DispatchStatus.FAILED)


class BroadcastDispatcher:
    """
    Worker pool for background broadcasts.

    Usage:
        dispatcher = BroadcastDispatcher(pipeline)
        await dispatcher.start()

        job_id = await dispatcher.submit(recipients, body, tenant_id, message_id)
        job = await dispatcher.wait(job_id)

        await dispatcher.stop()
    """

    def __init__(
        self,
        pipeline: DeliveryPipeline,
        workers: int | None = None,
        max_retained_jobs: int = 1000,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ):
        self._pipeline = pipeline
        self._workers = workers or get_settings().delivery.DISPATCH_WORKERS
        self._max_retained_jobs = max_retained_jobs
        self._clock = clock
        self._metrics = metrics
        self._queue: asyncio.Queue[BroadcastJob] = asyncio.Queue()
        self._jobs: OrderedDict[str, BroadcastJob] = OrderedDict()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start the worker tasks (idempotent)."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"broadcast-dispatcher-{index}")
            for index in range(self._workers)
        ]
        logger.info("Broadcast dispatcher started", stage="DSP.0", workers=self._workers)

    async def stop(self, drain: bool = True) -> None:
        """
        Stop the workers.

        Args:
            drain: Finish every queued job first. Otherwise running and
                queued jobs are marked failed so their waiters are released.
        """
        if drain and self._tasks:
            await self._queue.join()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._finish(job, DispatchStatus.FAILED, error="Dispatcher stopped before the job ran")
            self._queue.task_done()

        logger.info("Broadcast dispatcher stopped", stage="DSP.0")

    async def submit(
        self,
        recipients: list[str],
        body: str,
        tenant_id: str,
        message_id: str,
        options: DeliveryOptions | None = None,
    ) -> str:
        """
        Queue a broadcast and return its job id.

        STAGE-DSP.1: Job submission
        """
        job = BroadcastJob(
            job_id=uuid.uuid4().hex,
            message_id=message_id,
            tenant_id=tenant_id,
            recipients=list(recipients),
            body=body,
            options=options,
            submitted_at=self._clock(),
        )
        self._jobs[job.job_id] = job
        self._prune()
        await self._queue.put(job)
        if self._metrics is not None:
            self._metrics.set_dispatch_queue_depth(self._queue.qsize())

        logger.info(
            "Broadcast queued",
            stage="DSP.1",
            job_id=job.job_id,
            message_id=message_id,
            recipients=len(job.recipients),
        )
        return job.job_id

    def status(self, job_id: str) -> BroadcastJob | None:
        return self._jobs.get(job_id)

    async def wait(self, job_id: str, timeout: float | None = None) -> BroadcastJob:
        """
        Wait until the job completed or failed.

        Raises:
            KeyError: Unknown job id
            asyncio.TimeoutError: The job did not finish within `timeout`
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        await asyncio.wait_for(job.done.wait(), timeout=timeout)
        return job

    async def _worker(self, index: int) -> None:
        """
        Consume jobs until cancelled.

        STAGE-DSP.2: Worker loop
        """
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()
                if self._metrics is not None:
                    self._metrics.set_dispatch_queue_depth(self._queue.qsize())

    async def _run(self, job: BroadcastJob) -> None:
        job.status = DispatchStatus.RUNNING
        job.started_at = self._clock()
        bind_delivery_context(job.message_id, job.tenant_id)
        try:
            result = await self._pipeline.deliver_many(
                job.recipients, job.body, job.tenant_id, job.message_id, job.options
            )
        except asyncio.CancelledError:
            logger.warning("Broadcast job interrupted by shutdown", stage="DSP.2", job_id=job.job_id)
            self._finish(job, DispatchStatus.FAILED, error="Dispatcher stopped while the job was running")
            raise
        except Exception as e:
            logger.error(
                "Broadcast job failed",
                stage=Stage.DISPATCH.value,
                job_id=job.job_id,
                error=str(e),
                exc_info=True,
            )
            self._finish(job, DispatchStatus.FAILED, error=str(e) or e.__class__.__name__)
        else:
            self._finish(job, DispatchStatus.COMPLETED, result=result)
            logger.info(
                "Broadcast job completed",
                stage="DSP.2",
                job_id=job.job_id,
                successful=len(result.successful),
                failed=len(result.failed),
            )
        finally:
            clear_delivery_context()

    def _finish(
        self,
        job: BroadcastJob,
        status: DispatchStatus,
        result: BroadcastResult | None = None,
        error: str | None = None,
    ) -> None:
        job.status = status
        job.result = result
        job.error = error
        job.finished_at = self._clock()
        job.done.set()

    def _prune(self) -> None:
        """Forget the oldest finished jobs beyond max_retained_jobs."""
        excess = len(self._jobs) - self._max_retained_jobs
        if excess <= 0:
            return
        for job_id in [job_id for job_id, job in self._jobs.items() if job.finished][:excess]:
            del self._jobs[job_id]
