"""
Distributed Job Lock

Coordinates one-at-a-time execution of named recurring jobs (billing cycles,
recovery sweeps, archival, recurring broadcasts) across every process of a
deployment.

Flow:
    1. Try to acquire `job:{name}` with a fresh random token (SET NX + expiry)
    2. If acquired, run the job
    3. If another process holds the lock, skip this run
    4. Release: delete the key only if it still holds OUR token

The compare-and-delete in step 4 keeps a holder whose lock already expired
(slow job, long GC pause) from deleting the lock of the process that acquired
it afterwards.

Failure Semantics:
    The lock fails CLOSED. If the store cannot confirm acquisition the job
    does not run. Release failures are logged; the TTL reclaims the lock.
"""

import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sms_delivery.core.config.constants import KEY_JOB_LOCK, Stage
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.exceptions import LockNotAcquiredError, StoreUnavailableError
from sms_delivery.core.interfaces.store import SharedStore
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.store_guard import guarded_call

logger = get_logger(__name__)

T = TypeVar("T")


def new_lock_token() -> str:
    """Random 128-bit lock token."""
    return secrets.token_hex(16)


class DistributedJobLock:
    """
    Shared-store lock for named jobs.

    Usage:
        lock = DistributedJobLock(store)

        result = await lock.with_lock("recurring-messages", run_recurring_messages)
        if result is None:
            ...  # another process ran it

        async with lock.hold("billing-cycle", ttl_ms=120_000) as token:
            if token is None:
                return
            ...
    """

    def __init__(
        self,
        store: SharedStore,
        default_ttl_ms: int | None = None,
        timeout: float | None = None,
        metrics=None,
    ):
        settings = get_settings()
        self._store = store
        self.default_ttl_ms = default_ttl_ms if default_ttl_ms is not None else settings.job_lock.JOB_LOCK_DEFAULT_TTL_MS
        self.with_lock_ttl_ms = settings.job_lock.JOB_LOCK_WITH_LOCK_TTL_MS
        self._timeout = timeout if timeout is not None else settings.store.STORE_OPERATION_TIMEOUT
        self._metrics = metrics

    @staticmethod
    def _key(job_name: str) -> str:
        return f"{KEY_JOB_LOCK}{job_name}"

    def _record(self, job_name: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_job_lock(job_name, outcome)

    async def acquire(self, job_name: str, ttl_ms: int | None = None) -> str | None:
        """
        Acquire the lock for `job_name`.

        STAGE-LOCK.1: Lock acquisition

        Returns:
            The lock token, or None if another process holds the lock or the
            store could not confirm acquisition
        """
        if ttl_ms is None:
            ttl_ms = self.default_ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")

        key = self._key(job_name)
        token = new_lock_token()
        try:
            acquired = await guarded_call(
                self._store.set_if_absent(key, token, ttl_ms), self._timeout, "set_if_absent", key
            )
        except StoreUnavailableError as e:
            logger.error(
                "Could not confirm job lock, skipping run",
                stage=Stage.JOB_LOCK.value,
                job=job_name,
                error=e.message,
            )
            self._record(job_name, "error")
            return None

        if not acquired:
            logger.info("Job lock held by another process", stage="LOCK.1", job=job_name)
            self._record(job_name, "contended")
            return None

        logger.info("Acquired job lock", stage="LOCK.1", job=job_name, ttl_ms=ttl_ms)
        self._record(job_name, "acquired")
        return token

    async def release(self, job_name: str, token: str | None) -> bool:
        """
        Release the lock if it is still held with `token`.

        STAGE-LOCK.2: Lock release

        Returns:
            True if this call deleted the lock. False when the lock had
            already expired, belongs to someone else or the store failed.
        """
        if not token:
            return False

        key = self._key(job_name)
        try:
            released = await guarded_call(
                self._store.delete_if_equals(key, token), self._timeout, "delete_if_equals", key
            )
        except StoreUnavailableError as e:
            logger.warning(
                "Failed to release job lock, it will expire on its own",
                stage="LOCK.2",
                job=job_name,
                error=e.message,
            )
            return False

        if released:
            logger.info("Released job lock", stage="LOCK.2", job=job_name)
            self._record(job_name, "released")
        else:
            logger.warning("Job lock already expired or re-acquired elsewhere", stage="LOCK.2", job=job_name)
            self._record(job_name, "lost")
        return released

    async def extend(self, job_name: str, token: str, ttl_ms: int | None = None) -> bool:
        """
        Refresh the expiry of a lock we still hold (long running jobs).

        Returns:
            False if the lock is no longer ours or the store failed
        """
        if ttl_ms is None:
            ttl_ms = self.default_ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")
        key = self._key(job_name)
        try:
            extended = await guarded_call(
                self._store.compare_and_set(key, token, token, ttl_ms), self._timeout, "compare_and_set", key
            )
        except StoreUnavailableError as e:
            logger.warning("Failed to extend job lock", stage="LOCK.3", job=job_name, error=e.message)
            return False
        if not extended:
            logger.warning("Cannot extend job lock held elsewhere", stage="LOCK.3", job=job_name)
        return extended

    @asynccontextmanager
    async def hold(self, job_name: str, ttl_ms: int | None = None) -> AsyncIterator[str | None]:
        """
        Scoped acquisition: yields the token (or None) and releases on exit
        if and only if the lock was acquired.
        """
        token = await self.acquire(job_name, ttl_ms)
        try:
            yield token
        finally:
            if token is not None:
                await self.release(job_name, token)

    @asynccontextmanager
    async def require(self, job_name: str, ttl_ms: int | None = None) -> AsyncIterator[str]:
        """
        Like hold(), but raise LockNotAcquiredError instead of yielding None.
        """
        async with self.hold(job_name, ttl_ms) as token:
            if token is None:
                raise LockNotAcquiredError(f"Job lock not acquired: {job_name}", correlation_id=job_name)
            yield token

    async def with_lock(
        self, job_name: str, fn: Callable[[], Awaitable[T]], ttl_ms: int | None = None
    ) -> T | None:
        """
        Run `fn` while holding the job lock.

        Returns:
            fn's result, or None when the lock was not acquired (fn not called).
            Exceptions raised by fn propagate after the lock is released.
        """
        if ttl_ms is None:
            ttl_ms = self.with_lock_ttl_ms
        async with self.hold(job_name, ttl_ms) as token:
            if token is None:
                return None
            return await fn()

    async def is_held(self, job_name: str) -> bool:
        key = self._key(job_name)
        try:
            return await guarded_call(self._store.exists(key), self._timeout, "exists", key)
        except StoreUnavailableError as e:
            logger.error("Failed to check job lock", stage="LOCK.4", job=job_name, error=e.message)
            return False

    async def force_release(self, job_name: str) -> bool:
        """Delete the lock regardless of owner (operator action after a crash)."""
        key = self._key(job_name)
        try:
            deleted = await guarded_call(self._store.delete(key), self._timeout, "delete", key)
        except StoreUnavailableError as e:
            logger.error("Failed to force release job lock", stage="LOCK.5", job=job_name, error=e.message)
            return False
        logger.warning("Force released job lock", stage="LOCK.5", job=job_name)
        return deleted > 0

    async def active_locks(self) -> list[str]:
        """Names of jobs whose lock is currently held."""
        try:
            keys = await guarded_call(
                self._store.keys_with_prefix(KEY_JOB_LOCK), self._timeout, "keys_with_prefix", KEY_JOB_LOCK
            )
        except StoreUnavailableError as e:
            logger.error("Failed to list job locks", stage="LOCK.6", error=e.message)
            return []
        return sorted(key[len(KEY_JOB_LOCK):] for key in keys)
