"""
Token Bucket Rate Limiter

Per-subject token bucket whose state lives in the shared store, so every
process of a deployment enforces the same quota.

Algorithm:
----------
- Bucket capacity = quota per window (e.g. 100 messages / hour)
- Tokens refill continuously at capacity / window_seconds per second, capped
  at capacity
- Each request costs `cost` tokens; it is admitted if tokens >= cost
- Every decision persists the bucket with TTL = window_seconds, so idle
  subjects are forgotten and come back with a full bucket

Concurrency:
------------
Buckets are updated with compare-and-set: read the raw record, compute the
new one, write it only if the record is still the one that was read.
Conflicting writers retry; two processes can never both spend the same token.

Failure Semantics:
------------------
The limiter fails OPEN. A store outage, a timeout or contention that outlasts
`cas_retries` admits the request and logs a warning.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import orjson

from sms_delivery.core.config.constants import KEY_RATE_LIMIT, Stage
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.exceptions import (
    InvalidRateLimitConfigError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from sms_delivery.core.interfaces.store import SharedStore
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.store_guard import guarded_call

logger = get_logger(__name__)


@dataclass
class Bucket:
    """Token bucket state as persisted in the shared store."""

    tokens: float
    last_refill: float
    total_requests: int = 0

    @classmethod
    def load(cls, raw: str | None, capacity: float, now: float) -> "Bucket":
        """Decode a stored bucket; a missing or unreadable record is a full bucket."""
        if raw is None:
            return cls(tokens=capacity, last_refill=now)
        try:
            data = orjson.loads(raw)
            return cls(
                tokens=min(float(data["tokens"]), capacity),
                last_refill=float(data["last_refill"]),
                total_requests=int(data.get("total_requests", 0)),
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable bucket record", stage="RL.1")
            return cls(tokens=capacity, last_refill=now)

    def dump(self) -> str:
        return orjson.dumps(
            {
                "tokens": self.tokens,
                "last_refill": self.last_refill,
                "total_requests": self.total_requests,
            }
        ).decode()

    def refill(self, capacity: float, window_seconds: float, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        rate = capacity / window_seconds
        self.tokens = min(capacity, self.tokens + elapsed * rate)
        self.last_refill = max(self.last_refill, now)


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a subject's quota."""

    remaining: int
    limit: float
    reset_at: float
    retry_after_seconds: float


class TokenBucketRateLimiter:
    """
    Shared-store token bucket limiter.

    Usage:
        limiter = TokenBucketRateLimiter(store, capacity=100, window_seconds=3600)

        if not await limiter.admit(f"user:{user_id}"):
            status = await limiter.status(f"user:{user_id}")
            ...
    """

    def __init__(
        self,
        store: SharedStore,
        capacity: float | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float | None = None,
        cas_retries: int | None = None,
        metrics=None,
    ):
        settings = get_settings()
        self._store = store
        self.capacity = capacity if capacity is not None else settings.rate_limit.RATE_LIMIT_CAPACITY
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.rate_limit.RATE_LIMIT_WINDOW_SECONDS
        )
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.store.STORE_OPERATION_TIMEOUT
        self._cas_retries = cas_retries if cas_retries is not None else settings.rate_limit.RATE_LIMIT_CAS_RETRIES
        self._metrics = metrics
        self._validate(self.capacity, self.window_seconds)

    @staticmethod
    def _validate(capacity: float, window_seconds: float, cost: float = 1) -> None:
        if capacity <= 0:
            raise InvalidRateLimitConfigError("capacity must be positive", details={"capacity": capacity})
        if window_seconds <= 0:
            raise InvalidRateLimitConfigError(
                "window_seconds must be positive", details={"window_seconds": window_seconds}
            )
        if cost <= 0:
            raise InvalidRateLimitConfigError("cost must be positive", details={"cost": cost})

    @staticmethod
    def _key(subject: str) -> str:
        return f"{KEY_RATE_LIMIT}{subject}"

    def _record(self, decision: str) -> None:
        if self._metrics is not None:
            self._metrics.record_rate_limit_decision(decision)

    async def admit(
        self,
        subject: str,
        cost: float = 1,
        capacity: float | None = None,
        window_seconds: float | None = None,
    ) -> bool:
        """
        Spend `cost` tokens from the subject's bucket.

        STAGE-RL.2: Admission decision

        Returns:
            True if admitted (or the store could not be consulted), False if
            the bucket does not hold enough tokens
        """
        capacity = capacity if capacity is not None else self.capacity
        window_seconds = window_seconds if window_seconds is not None else self.window_seconds
        self._validate(capacity, window_seconds, cost)

        key = self._key(subject)
        ttl_ms = max(1, int(window_seconds * 1000))

        try:
            for attempt in range(1, self._cas_retries + 1):
                raw = await guarded_call(self._store.get(key), self._timeout, "get", key)
                now = self._clock()
                bucket = Bucket.load(raw, capacity, now)
                bucket.refill(capacity, window_seconds, now)
                bucket.total_requests += 1

                allowed = bucket.tokens >= cost
                if allowed:
                    bucket.tokens -= cost

                written = await guarded_call(
                    self._store.compare_and_set(key, raw, bucket.dump(), ttl_ms),
                    self._timeout,
                    "compare_and_set",
                    key,
                )
                if written:
                    if not allowed:
                        logger.info(
                            "Rate limit exceeded",
                            stage="RL.2",
                            subject=subject,
                            tokens=round(bucket.tokens, 3),
                            cost=cost,
                        )
                    self._record("allowed" if allowed else "rejected")
                    return allowed

                logger.debug("Bucket changed concurrently, retrying", stage="RL.2", subject=subject, attempt=attempt)

        except StoreUnavailableError as e:
            logger.warning(
                "Rate limit check failed, allowing request (fail-open)",
                stage=Stage.RATE_LIMITING.value,
                subject=subject,
                error=e.message,
            )
            self._record("fail_open")
            return True

        logger.warning(
            "Bucket contention exhausted retries, allowing request (fail-open)",
            stage=Stage.RATE_LIMITING.value,
            subject=subject,
            retries=self._cas_retries,
        )
        self._record("fail_open")
        return True

    async def enforce(
        self,
        subject: str,
        cost: float = 1,
        capacity: float | None = None,
        window_seconds: float | None = None,
    ) -> None:
        """
        Like admit(), but raise RateLimitExceededError on rejection.
        """
        if await self.admit(subject, cost, capacity, window_seconds):
            return
        status = await self.status(subject, capacity, window_seconds)
        raise RateLimitExceededError(
            f"Rate limit exceeded for {subject}",
            correlation_id=subject,
            details={
                "remaining": status.remaining,
                "limit": status.limit,
                "retry_after_seconds": status.retry_after_seconds,
            },
        )

    async def status(
        self,
        subject: str,
        capacity: float | None = None,
        window_seconds: float | None = None,
    ) -> RateLimitStatus:
        """
        Report the subject's quota without spending a token.

        STAGE-RL.3: Quota status
        """
        capacity = capacity if capacity is not None else self.capacity
        window_seconds = window_seconds if window_seconds is not None else self.window_seconds
        self._validate(capacity, window_seconds)

        key = self._key(subject)
        now = self._clock()
        try:
            raw = await guarded_call(self._store.get(key), self._timeout, "get", key)
        except StoreUnavailableError as e:
            logger.warning("Rate limit status unavailable, reporting full quota", stage="RL.3", error=e.message)
            raw = None

        if raw is None:
            return RateLimitStatus(
                remaining=math.floor(capacity),
                limit=capacity,
                reset_at=now + window_seconds,
                retry_after_seconds=0.0,
            )

        bucket = Bucket.load(raw, capacity, now)
        bucket.refill(capacity, window_seconds, now)
        rate = capacity / window_seconds
        return RateLimitStatus(
            remaining=math.floor(bucket.tokens),
            limit=capacity,
            reset_at=bucket.last_refill + window_seconds,
            retry_after_seconds=max(0.0, (1 - bucket.tokens) / rate),
        )

    async def reset(self, subject: str) -> bool:
        """Drop the subject's bucket (administrative reset). Returns False if the store failed."""
        key = self._key(subject)
        try:
            await guarded_call(self._store.delete(key), self._timeout, "delete", key)
        except StoreUnavailableError as e:
            logger.error("Failed to reset bucket", stage="RL.4", subject=subject, error=e.message)
            return False
        logger.info("Reset rate limit bucket", stage="RL.4", subject=subject)
        return True

    async def request_count(self, subject: str) -> int:
        """Requests counted by the subject's live bucket (0 when idle or unavailable)."""
        key = self._key(subject)
        try:
            raw = await guarded_call(self._store.get(key), self._timeout, "get", key)
        except StoreUnavailableError:
            return 0
        if raw is None:
            return 0
        return Bucket.load(raw, self.capacity, self._clock()).total_requests
