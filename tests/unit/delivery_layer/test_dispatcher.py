"""
Unit Tests for BroadcastDispatcher

Tests job lifecycle, completion observability and shutdown behavior.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sms_delivery.core.config.constants import DispatchStatus
from sms_delivery.core.resilience.circuit_breaker import CircuitBreaker
from sms_delivery.delivery.dead_letter import DeadLetterStore
from sms_delivery.delivery.dispatcher import BroadcastDispatcher
from sms_delivery.delivery.models import BroadcastResult, DeliveryOptions
from sms_delivery.delivery.pipeline import DeliveryPipeline
from tests.test_fixtures import SenderTestFactory


@pytest.fixture
def pipeline(store, clock, no_sleep):
    return DeliveryPipeline(
        sender=SenderTestFactory.per_recipient(failing={"+15550000002"}),
        breaker=CircuitBreaker("carrier-api", failure_threshold=10, clock=clock),
        dead_letters=DeadLetterStore(store, timeout=1),
        options=DeliveryOptions(max_retries=2),
        sleep=no_sleep,
        clock=clock,
    )


@pytest.fixture
async def dispatcher(pipeline, clock, mock_metrics):
    dispatcher = BroadcastDispatcher(pipeline, workers=2, clock=clock, metrics=mock_metrics)
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop(drain=False)


@pytest.mark.unit
class TestBroadcastDispatcher:
    @pytest.mark.asyncio
    async def test_submitted_job_completes(self, dispatcher):
        job_id = await dispatcher.submit(["+15550000001", "+15550000002"], "hi", "tenant-a", "bcast-1")

        job = await dispatcher.wait(job_id, timeout=5)

        assert job.status == DispatchStatus.COMPLETED
        assert job.finished is True
        assert job.result.total == 2
        assert [r.recipient for r in job.result.failed] == ["+15550000002"]
        assert job.result.dead_letter_count == 1

    @pytest.mark.asyncio
    async def test_status_lookup(self, dispatcher):
        job_id = await dispatcher.submit(["+15550000001"], "hi", "tenant-a", "bcast-1")
        assert dispatcher.status(job_id).message_id == "bcast-1"
        assert dispatcher.status("unknown") is None

    @pytest.mark.asyncio
    async def test_wait_unknown_job(self, dispatcher):
        with pytest.raises(KeyError):
            await dispatcher.wait("unknown")

    @pytest.mark.asyncio
    async def test_pipeline_crash_marks_job_failed(self, clock):
        pipeline = AsyncMock()
        pipeline.deliver_many.side_effect = RuntimeError("pipeline exploded")
        dispatcher = BroadcastDispatcher(pipeline, workers=1, clock=clock)
        await dispatcher.start()
        try:
            job = await dispatcher.wait(await dispatcher.submit(["+15550000001"], "hi", "t", "b"), timeout=5)
        finally:
            await dispatcher.stop()

        assert job.status == DispatchStatus.FAILED
        assert job.error == "pipeline exploded"

    @pytest.mark.asyncio
    async def test_stop_drains_queue(self, pipeline, clock):
        dispatcher = BroadcastDispatcher(pipeline, workers=1, clock=clock)
        await dispatcher.start()
        job_ids = [await dispatcher.submit(["+15550000001"], "hi", "t", f"b-{i}") for i in range(3)]

        await dispatcher.stop(drain=True)

        assert not dispatcher.running
        assert all(dispatcher.status(j).status == DispatchStatus.COMPLETED for j in job_ids)

    @pytest.mark.asyncio
    async def test_stop_without_drain_fails_running_and_queued_jobs(self, clock):
        release = asyncio.Event()

        async def blocked(*args, **kwargs):
            await release.wait()
            return BroadcastResult(message_id="b")

        pipeline = AsyncMock()
        pipeline.deliver_many.side_effect = blocked
        dispatcher = BroadcastDispatcher(pipeline, workers=1, clock=clock)
        await dispatcher.start()

        first = await dispatcher.submit(["+15550000001"], "hi", "t", "b-1")
        queued = await dispatcher.submit(["+15550000002"], "hi", "t", "b-2")
        for _ in range(3):
            await asyncio.sleep(0)
        assert dispatcher.status(first).status == DispatchStatus.RUNNING

        await dispatcher.stop(drain=False)

        job = await dispatcher.wait(queued, timeout=1)
        assert job.status == DispatchStatus.FAILED
        assert job.error == "Dispatcher stopped before the job ran"

        interrupted = await dispatcher.wait(first, timeout=1)
        assert interrupted.status == DispatchStatus.FAILED
        assert interrupted.error == "Dispatcher stopped while the job was running"
        assert interrupted.finished_at is not None

    @pytest.mark.asyncio
    async def test_finished_jobs_are_pruned(self, pipeline, clock):
        dispatcher = BroadcastDispatcher(pipeline, workers=1, max_retained_jobs=2, clock=clock)
        await dispatcher.start()
        try:
            job_ids = []
            for i in range(4):
                job_id = await dispatcher.submit(["+15550000001"], "hi", "t", f"b-{i}")
                await dispatcher.wait(job_id, timeout=5)
                job_ids.append(job_id)
        finally:
            await dispatcher.stop()

        assert dispatcher.status(job_ids[0]) is None
        assert dispatcher.status(job_ids[-1]) is not None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, dispatcher, mock_metrics):
        await dispatcher.start()
        assert dispatcher.running
        await dispatcher.submit(["+15550000001"], "hi", "t", "b")
        mock_metrics.set_dispatch_queue_depth.assert_called()
