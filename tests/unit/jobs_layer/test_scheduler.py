"""
Unit Tests for JobScheduler

Tests lock-guarded job execution and the interval loop.
"""

import asyncio

import pytest

from sms_delivery.core.resilience.job_lock import DistributedJobLock
from sms_delivery.jobs.scheduler import JobScheduler, RecurringJob


@pytest.fixture
def lock(store, mock_metrics):
    return DistributedJobLock(store, timeout=1, metrics=mock_metrics)


@pytest.fixture
def scheduler(lock, mock_metrics):
    return JobScheduler(lock, metrics=mock_metrics)


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.mark.unit
class TestRunOnce:
    @pytest.mark.asyncio
    async def test_runs_under_lock(self, scheduler, lock, mock_metrics):
        seen = {}

        async def archive():
            seen["held"] = await lock.is_held("archival")
            return "archived"

        scheduler.register(RecurringJob("archival", 60, archive))
        run = await scheduler.run_once("archival")

        assert run.ran is True
        assert run.succeeded is True
        assert run.result == "archived"
        assert seen["held"] is True
        assert await lock.is_held("archival") is False
        assert mock_metrics.record_job_duration.call_args.args[:2] == ("archival", "completed")

    @pytest.mark.asyncio
    async def test_skips_when_lock_held_elsewhere(self, scheduler, lock):
        calls = []

        async def billing():
            calls.append(1)

        scheduler.register(RecurringJob("billing-cycle", 60, billing))
        await lock.acquire("billing-cycle")

        run = await scheduler.run_once("billing-cycle")

        assert run.ran is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_job_error_is_reported_and_lock_released(self, scheduler, lock):
        async def broken():
            raise RuntimeError("db gone")

        scheduler.register(RecurringJob("recovery", 60, broken))
        run = await scheduler.run_once("recovery")

        assert run.ran is True
        assert run.succeeded is False
        assert run.error == "db gone"
        assert await lock.is_held("recovery") is False

    @pytest.mark.asyncio
    async def test_store_outage_skips_run(self, scheduler, store):
        calls = []

        async def job():
            calls.append(1)

        scheduler.register(RecurringJob("recurring-messages", 60, job))
        store.set_available(False)

        run = await scheduler.run_once("recurring-messages")
        assert run.ran is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(KeyError):
            await scheduler.run_once("nope")

    def test_duplicate_registration(self, scheduler):
        async def job():
            pass

        scheduler.register(RecurringJob("a", 1, job))
        with pytest.raises(ValueError):
            scheduler.register(RecurringJob("a", 1, job))
        assert scheduler.jobs == ["a"]

    def test_interval_must_be_positive(self):
        async def job():
            pass

        with pytest.raises(ValueError):
            RecurringJob("a", 0, job)


@pytest.mark.unit
class TestLoop:
    @pytest.mark.asyncio
    async def test_loop_runs_repeatedly_until_stopped(self, scheduler):
        runs = []

        async def tick():
            runs.append(1)

        scheduler.register(RecurringJob("tick", 0.01, tick, run_immediately=True))
        await scheduler.start()
        try:
            await wait_until(lambda: len(runs) >= 3)
        finally:
            await scheduler.stop()

        count = len(runs)
        await asyncio.sleep(0.05)
        assert len(runs) == count

    @pytest.mark.asyncio
    async def test_waits_a_full_interval_by_default(self, scheduler):
        runs = []

        async def tick():
            runs.append(1)

        scheduler.register(RecurringJob("slow", 60, tick))
        await scheduler.start()
        await asyncio.sleep(0.02)
        await scheduler.stop()

        assert runs == []

    @pytest.mark.asyncio
    async def test_failing_job_keeps_loop_alive(self, scheduler):
        runs = []

        async def flaky():
            runs.append(1)
            raise RuntimeError("boom")

        scheduler.register(RecurringJob("flaky", 0.01, flaky, run_immediately=True))
        await scheduler.start()
        try:
            await wait_until(lambda: len(runs) >= 2)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_register_after_start_schedules_job(self, scheduler):
        runs = []

        async def first():
            pass

        async def late():
            runs.append(1)

        scheduler.register(RecurringJob("first", 60, first))
        await scheduler.start()
        try:
            scheduler.register(RecurringJob("late", 0.01, late, run_immediately=True))
            await wait_until(lambda: runs)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_two_schedulers_share_one_lock(self, store):
        in_progress = 0
        overlap = False
        runs = []

        async def exclusive():
            nonlocal in_progress, overlap
            in_progress += 1
            overlap = overlap or in_progress > 1
            await asyncio.sleep(0.01)
            in_progress -= 1
            runs.append(1)

        schedulers = [JobScheduler(DistributedJobLock(store, timeout=1)) for _ in range(2)]
        for scheduler in schedulers:
            scheduler.register(RecurringJob("billing-cycle", 0.005, exclusive, run_immediately=True))
            await scheduler.start()
        try:
            await wait_until(lambda: len(runs) >= 3)
        finally:
            for scheduler in schedulers:
                await scheduler.stop()

        assert overlap is False
