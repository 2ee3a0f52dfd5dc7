"""
Unit Tests for TokenBucketRateLimiter

Tests refill arithmetic, persistence with TTL, fail-open behavior and
compare-and-set contention handling against the in-memory store.
"""

import asyncio
from unittest.mock import AsyncMock

import orjson
import pytest

from sms_delivery.core.exceptions import InvalidRateLimitConfigError, RateLimitExceededError
from sms_delivery.core.resilience.rate_limiter import Bucket, TokenBucketRateLimiter


@pytest.fixture
def limiter(store, clock):
    return TokenBucketRateLimiter(store, capacity=5, window_seconds=60, clock=clock, timeout=1)


@pytest.mark.unit
class TestAdmission:
    @pytest.mark.asyncio
    async def test_capacity_then_reject_then_refill(self, limiter, clock):
        results = [await limiter.admit("user1") for _ in range(5)]
        assert results == [True] * 5
        assert await limiter.admit("user1") is False

        clock.advance(60)
        assert await limiter.admit("user1") is True

    @pytest.mark.asyncio
    async def test_partial_refill(self, limiter, clock):
        for _ in range(5):
            await limiter.admit("user1")

        # 5 tokens / 60s -> one token every 12s
        clock.advance(11.9)
        assert await limiter.admit("user1") is False
        clock.advance(0.2)
        assert await limiter.admit("user1") is True

    @pytest.mark.asyncio
    async def test_subjects_are_independent(self, limiter):
        for _ in range(5):
            await limiter.admit("user1")
        assert await limiter.admit("user1") is False
        assert await limiter.admit("user2") is True

    @pytest.mark.asyncio
    async def test_cost_larger_than_tokens_is_rejected_without_going_negative(self, limiter, store):
        assert await limiter.admit("user1", cost=4) is True
        assert await limiter.admit("user1", cost=2) is False

        bucket = Bucket.load(await store.get("rate_limit:user1"), 5, 0)
        assert bucket.tokens == pytest.approx(1)

    @pytest.mark.asyncio
    async def test_admitted_cost_never_exceeds_capacity(self, limiter, clock):
        admitted = 0
        for _ in range(50):
            if await limiter.admit("user1"):
                admitted += 1
            clock.advance(0.5)
        # 25s elapsed -> at most 5 + 25 * (5/60) tokens
        assert admitted <= 5 + 25 * 5 / 60 + 1e-9

    @pytest.mark.asyncio
    async def test_per_call_capacity_override(self, limiter):
        results = [await limiter.admit("tenant", capacity=2, window_seconds=10) for _ in range(3)]
        assert results == [True, True, False]

    @pytest.mark.asyncio
    async def test_invalid_config_raises(self, limiter, store):
        with pytest.raises(InvalidRateLimitConfigError):
            await limiter.admit("user1", cost=0)
        with pytest.raises(InvalidRateLimitConfigError):
            await limiter.admit("user1", capacity=-1)
        with pytest.raises(InvalidRateLimitConfigError):
            TokenBucketRateLimiter(store, capacity=5, window_seconds=0)


@pytest.mark.unit
class TestPersistence:
    @pytest.mark.asyncio
    async def test_bucket_is_persisted_with_window_ttl(self, limiter, store):
        await limiter.admit("user1")

        raw = await store.get("rate_limit:user1")
        data = orjson.loads(raw)
        assert data["tokens"] == pytest.approx(4)
        assert data["total_requests"] == 1
        assert store.ttl_remaining("rate_limit:user1") == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_rejection_is_persisted_too(self, limiter):
        for _ in range(6):
            await limiter.admit("user1")
        assert await limiter.request_count("user1") == 6

    @pytest.mark.asyncio
    async def test_idle_subject_is_forgotten(self, limiter, store, clock):
        await limiter.admit("user1")
        clock.advance(60)
        assert await store.get("rate_limit:user1") is None
        assert await limiter.request_count("user1") == 0

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        for _ in range(5):
            await limiter.admit("user1")
        assert await limiter.reset("user1") is True
        assert await limiter.admit("user1") is True


@pytest.mark.unit
class TestStatus:
    @pytest.mark.asyncio
    async def test_status_for_unknown_subject(self, limiter, clock):
        status = await limiter.status("nobody")
        assert status.remaining == 5
        assert status.limit == 5
        assert status.retry_after_seconds == 0
        assert status.reset_at == clock() + 60

    @pytest.mark.asyncio
    async def test_status_does_not_consume(self, limiter):
        await limiter.admit("user1")
        first = await limiter.status("user1")
        second = await limiter.status("user1")
        assert first.remaining == second.remaining == 4

    @pytest.mark.asyncio
    async def test_retry_after_when_empty(self, limiter, clock):
        for _ in range(5):
            await limiter.admit("user1")
        status = await limiter.status("user1")
        assert status.remaining == 0
        assert status.retry_after_seconds == pytest.approx(12)

        clock.advance(3)
        status = await limiter.status("user1")
        assert status.retry_after_seconds == pytest.approx(9)

    @pytest.mark.asyncio
    async def test_enforce_raises_with_details(self, limiter):
        for _ in range(5):
            await limiter.enforce("user1")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce("user1")
        assert exc_info.value.details["remaining"] == 0
        assert exc_info.value.details["retry_after_seconds"] > 0


@pytest.mark.unit
class TestFailOpen:
    @pytest.mark.asyncio
    async def test_store_outage_admits(self, limiter, store, mock_metrics):
        limiter._metrics = mock_metrics
        store.set_available(False)

        assert all([await limiter.admit("user1") for _ in range(10)])
        mock_metrics.record_rate_limit_decision.assert_called_with("fail_open")

    @pytest.mark.asyncio
    async def test_store_timeout_admits(self, clock):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        slow_store = AsyncMock()
        slow_store.get.side_effect = hang
        limiter = TokenBucketRateLimiter(slow_store, capacity=1, window_seconds=60, clock=clock, timeout=0.01)

        assert await limiter.admit("user1") is True

    @pytest.mark.asyncio
    async def test_cas_contention_exhausted_admits(self, clock):
        contended = AsyncMock()
        contended.get.return_value = None
        contended.compare_and_set.return_value = False
        limiter = TokenBucketRateLimiter(
            contended, capacity=1, window_seconds=60, clock=clock, timeout=1, cas_retries=3
        )

        assert await limiter.admit("user1") is True
        assert contended.compare_and_set.await_count == 3

    @pytest.mark.asyncio
    async def test_status_during_outage_reports_full_quota(self, limiter, store):
        store.set_available(False)
        status = await limiter.status("user1")
        assert status.remaining == 5


@pytest.mark.unit
class TestConcurrentAdmission:
    @pytest.mark.asyncio
    async def test_concurrent_admits_never_over_admit(self, store, clock):
        limiter = TokenBucketRateLimiter(store, capacity=5, window_seconds=60, clock=clock, timeout=1, cas_retries=50)

        results = await asyncio.gather(*(limiter.admit("user1") for _ in range(20)))
        assert sum(results) == 5

    @pytest.mark.asyncio
    async def test_conflicting_write_is_retried(self, clock):
        """A bucket changed between read and write is re-read, not overwritten."""
        full = Bucket(tokens=1, last_refill=clock()).dump()
        empty = Bucket(tokens=0, last_refill=clock(), total_requests=1).dump()

        racing = AsyncMock()
        racing.get.side_effect = [full, empty]
        racing.compare_and_set.side_effect = [False, True]
        limiter = TokenBucketRateLimiter(racing, capacity=1, window_seconds=60, clock=clock, timeout=1)

        assert await limiter.admit("user1") is False
        assert racing.compare_and_set.await_args_list[1].args[1] == empty


@pytest.mark.unit
class TestBucket:
    def test_load_missing_is_full(self):
        bucket = Bucket.load(None, 10, 100.0)
        assert bucket.tokens == 10
        assert bucket.last_refill == 100.0

    def test_load_caps_to_capacity(self):
        raw = Bucket(tokens=50, last_refill=1.0).dump()
        assert Bucket.load(raw, 10, 2.0).tokens == 10

    def test_load_garbage_is_full(self):
        assert Bucket.load("not json", 3, 0).tokens == 3

    def test_refill_caps_and_ignores_clock_skew(self):
        bucket = Bucket(tokens=0, last_refill=100.0)
        bucket.refill(10, 10, 95.0)
        assert bucket.tokens == 0
        bucket.refill(10, 10, 1000.0)
        assert bucket.tokens == 10
