"""
Delivery Pipeline

Gets one message to one recipient across an unreliable carrier API.

MECHANISM OF ACTION:
-------------------
For attempt = 1..max_retries:
    a.  **Check Circuit**: if the breaker rejects, the attempt fails without
        calling the carrier. It consumes retry budget but is not reported to
        the breaker as a new failure.
    b.  **Send**: call the carrier (bounded by CB_SEND_TIMEOUT).
        - Success: record_success() and return immediately.
        - Failure: record_failure().
    c.  **Backoff**: sleep min(max_delay, initial_delay * multiplier^(attempt-1))
        before the next attempt (tenacity wait_exponential).
On exhaustion the message is written to the dead letter store.

`deliver` never raises for a delivery outcome; every terminal failure comes
back as a DeliveryResult with success=False, and is dead-lettered whenever
the store accepts the write.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from sms_delivery.core.config.constants import CIRCUIT_OPEN_REASON, Stage
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.exceptions import (
    CircuitBreakerOpenError,
    DeliveryBaseError,
    StoreUnavailableError,
    UpstreamSendError,
)
from sms_delivery.core.interfaces.sender import MessageSender
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerStats
from sms_delivery.delivery.dead_letter import DeadLetterStore
from sms_delivery.delivery.models import (
    BroadcastResult,
    DeadLetterEntry,
    DeliveryAttempt,
    DeliveryOptions,
    DeliveryResult,
)

logger = get_logger(__name__)

_RETRYABLE = (UpstreamSendError, CircuitBreakerOpenError)


def broadcast_dead_letter_id(message_id: str, recipient: str) -> str:
    """Dead letter id of one recipient of a broadcast."""
    return f"{message_id}:{recipient}"


class DeliveryPipeline:
    """
    Circuit breaker + retry + dead letter orchestration.

    Usage:
        pipeline = DeliveryPipeline(
            sender=carrier_client,
            breaker=registry.get_breaker(CARRIER_DEPENDENCY),
            dead_letters=DeadLetterStore(store),
        )
        result = await pipeline.deliver("+15550100", "Service at 10am", "tenant-1", "msg-1")
    """

    def __init__(
        self,
        sender: MessageSender,
        breaker: CircuitBreaker,
        dead_letters: DeadLetterStore,
        options: DeliveryOptions | None = None,
        send_timeout: float | None = None,
        max_concurrency: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ):
        settings = get_settings()
        self._sender = sender
        self._breaker = breaker
        self._dead_letters = dead_letters
        self.options = options or DeliveryOptions.from_settings()
        self._send_timeout = send_timeout or settings.circuit_breaker.CB_SEND_TIMEOUT
        self._max_concurrency = max_concurrency or settings.delivery.DELIVERY_MAX_CONCURRENCY
        self._sleep = sleep
        self._clock = clock
        self._metrics = metrics

    # =========================================================================
    # Single delivery
    # =========================================================================

    def _retrying(self, options: DeliveryOptions, log) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(options.max_retries),
            wait=wait_exponential(
                multiplier=options.initial_delay_ms / 1000,
                exp_base=options.backoff_multiplier,
                max=options.max_delay_ms / 1000,
            ),
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=lambda retry_state: log.info(
                "Delivery attempt failed, backing off",
                stage="DLV.3",
                attempt=retry_state.attempt_number,
                delay=round(retry_state.next_action.sleep, 3),
            ),
            sleep=self._sleep,
            reraise=True,
        )

    async def _attempt(
        self,
        recipient: str,
        body: str,
        tenant_id: str,
        message_id: str,
        attempt: int,
        options: DeliveryOptions,
        history: list[DeliveryAttempt],
    ) -> str:
        """
        One iteration of the retry loop.

        Raises:
            CircuitBreakerOpenError: The breaker rejected the attempt
            UpstreamSendError: The carrier call failed or timed out
        """
        backoff_ms = options.backoff_delay_ms(attempt) if attempt < options.max_retries else None

        def record(outcome: str, error: str | None = None) -> None:
            history.append(
                DeliveryAttempt(
                    recipient=recipient,
                    tenant_id=tenant_id,
                    message_id=message_id,
                    attempt=attempt,
                    outcome=outcome,
                    error=error,
                    backoff_ms=backoff_ms if outcome != "success" else None,
                )
            )
            if self._metrics is not None:
                self._metrics.record_delivery_attempt(outcome)

        # STAGE-DLV.1: Circuit check
        if not self._breaker.can_attempt():
            record("circuit_open", CIRCUIT_OPEN_REASON)
            raise CircuitBreakerOpenError(CIRCUIT_OPEN_REASON, correlation_id=message_id)

        # STAGE-DLV.2: Upstream send
        start = time.perf_counter()
        try:
            provider_id = await asyncio.wait_for(
                self._sender.send(recipient, body, tenant_id), timeout=self._send_timeout
            )
        except asyncio.TimeoutError as e:
            self._breaker.record_failure()
            error = f"Send timed out after {self._send_timeout}s"
            record("timeout", error)
            raise UpstreamSendError(error, correlation_id=message_id) from e
        except Exception as e:
            self._breaker.record_failure()
            error = str(e) or e.__class__.__name__
            record("failure", error)
            raise UpstreamSendError.from_exception(e, error, correlation_id=message_id) from e
        finally:
            if self._metrics is not None:
                self._metrics.record_send_latency(time.perf_counter() - start)

        self._breaker.record_success()
        record("success")
        return provider_id

    async def deliver(
        self,
        recipient: str,
        body: str,
        tenant_id: str,
        message_id: str,
        options: DeliveryOptions | None = None,
        dead_letter_id: str | None = None,
    ) -> DeliveryResult:
        """
        Deliver one message to one recipient with retries.

        Args:
            dead_letter_id: Id of the dead letter entry written on exhaustion
                (defaults to message_id)

        Returns:
            DeliveryResult, never raises for a delivery outcome
        """
        options = options or self.options
        log = logger.bind(message_id=message_id, tenant_id=tenant_id, recipient=recipient)
        history: list[DeliveryAttempt] = []
        attempts = 0
        provider_id = None

        try:
            async for attempt in self._retrying(options, log):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    provider_id = await self._attempt(
                        recipient, body, tenant_id, message_id, attempts, options, history
                    )
        except _RETRYABLE as e:
            return await self._exhausted(
                recipient, body, tenant_id, message_id, dead_letter_id or message_id, attempts, e, history, log
            )

        log.info("Message delivered", stage=Stage.DELIVERY.value, attempts=attempts)
        if self._metrics is not None:
            self._metrics.record_delivery_result(True)
        return DeliveryResult(
            success=True,
            attempts=attempts,
            recipient=recipient,
            message_id=message_id,
            provider_message_id=str(provider_id) if provider_id is not None else None,
            history=history,
        )

    async def _exhausted(
        self,
        recipient: str,
        body: str,
        tenant_id: str,
        message_id: str,
        dead_letter_id: str,
        attempts: int,
        error: DeliveryBaseError,
        history: list[DeliveryAttempt],
        log,
    ) -> DeliveryResult:
        """
        Terminal failure: dead-letter the message and build the result.

        STAGE-DLV.4: Retry budget exhausted
        """
        entry = DeadLetterEntry(
            message_id=dead_letter_id,
            origin_message_id=message_id,
            recipient=recipient,
            body=body,
            tenant_id=tenant_id,
            reason=error.message,
            attempts=attempts,
            enqueued_at=self._clock(),
        )
        dead_lettered = True
        try:
            await self._dead_letters.add(entry)
        except StoreUnavailableError as e:
            dead_lettered = False
            log.error(
                "Failed to write dead letter entry",
                stage="DLV.4",
                dead_letter_id=dead_letter_id,
                error=e.message,
            )

        log.error(
            "Delivery failed after all retries",
            stage="DLV.4",
            attempts=attempts,
            last_error=error.message,
            dead_lettered=dead_lettered,
        )
        if self._metrics is not None:
            self._metrics.record_delivery_result(False)
            self._metrics.record_dead_letter(dead_lettered)

        return DeliveryResult(
            success=False,
            attempts=attempts,
            recipient=recipient,
            message_id=message_id,
            last_error=error.message,
            dead_lettered=dead_lettered,
            history=history,
        )

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def deliver_many(
        self,
        recipients: list[str],
        body: str,
        tenant_id: str,
        message_id: str,
        options: DeliveryOptions | None = None,
    ) -> BroadcastResult:
        """
        Deliver one message to every recipient concurrently.

        A failing recipient never aborts its siblings. In-flight sends are
        bounded by max_concurrency. Duplicate recipients are delivered once.
        """
        options = options or self.options
        unique = list(dict.fromkeys(recipients))
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def deliver_one(recipient: str) -> DeliveryResult:
            async with semaphore:
                return await self.deliver(
                    recipient,
                    body,
                    tenant_id,
                    message_id,
                    options,
                    dead_letter_id=broadcast_dead_letter_id(message_id, recipient),
                )

        logger.info(
            "Broadcast started",
            stage="DLV.5",
            message_id=message_id,
            tenant_id=tenant_id,
            recipients=len(unique),
        )
        outcomes = await asyncio.gather(*(deliver_one(r) for r in unique), return_exceptions=True)

        result = BroadcastResult(message_id=message_id)
        for recipient, outcome in zip(unique, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(
                    "Unexpected delivery error",
                    stage="DLV.5",
                    message_id=message_id,
                    recipient=recipient,
                    error=str(outcome),
                )
                outcome = DeliveryResult(
                    success=False,
                    attempts=0,
                    recipient=recipient,
                    message_id=message_id,
                    last_error=str(outcome) or outcome.__class__.__name__,
                )
            (result.successful if outcome.success else result.failed).append(outcome)

        result.dead_letter_count = sum(1 for r in result.failed if r.attempts >= options.max_retries)
        logger.info(
            "Broadcast finished",
            stage="DLV.5",
            message_id=message_id,
            successful=len(result.successful),
            failed=len(result.failed),
            dead_letter_count=result.dead_letter_count,
        )
        return result

    # =========================================================================
    # Dead letter operations
    # =========================================================================

    async def list_dead_letters(self, limit: int = 50) -> list[DeadLetterEntry]:
        return await self._dead_letters.list(limit)

    async def replay(self, dead_letter_id: str, options: DeliveryOptions | None = None) -> DeliveryResult:
        """
        Re-deliver a dead-lettered message; remove the entry on success.

        STAGE-DLQ.4: Replay

        A missing entry (never stored, already replayed or expired) yields a
        failed result with attempts=0. A replay that fails again overwrites
        the entry with the new attempt count.
        """
        try:
            entry = await self._dead_letters.get(dead_letter_id)
        except StoreUnavailableError as e:
            logger.error("Dead letter store unavailable", stage="DLQ.4", dead_letter_id=dead_letter_id)
            return DeliveryResult(
                success=False, attempts=0, recipient="", message_id=dead_letter_id, last_error=e.message
            )

        if entry is None:
            logger.warning("Dead letter entry not found", stage="DLQ.4", dead_letter_id=dead_letter_id)
            if self._metrics is not None:
                self._metrics.record_replay("not_found")
            return DeliveryResult(
                success=False,
                attempts=0,
                recipient="",
                message_id=dead_letter_id,
                last_error=f"Dead letter entry not found: {dead_letter_id}",
            )

        result = await self.deliver(
            entry.recipient,
            entry.body,
            entry.tenant_id,
            entry.origin_message_id or entry.message_id,
            options,
            dead_letter_id=entry.message_id,
        )

        if result.success:
            try:
                await self._dead_letters.remove(entry.message_id)
            except StoreUnavailableError as e:
                logger.error(
                    "Replay delivered but entry removal failed",
                    stage="DLQ.4",
                    dead_letter_id=entry.message_id,
                    error=e.message,
                )
            logger.info("Dead letter replayed", stage="DLQ.4", dead_letter_id=entry.message_id)

        if self._metrics is not None:
            self._metrics.record_replay("success" if result.success else "failure")
        return result

    async def discard_dead_letter(self, dead_letter_id: str) -> bool:
        """Drop a dead letter without delivering it."""
        return await self._dead_letters.remove(dead_letter_id)

    def circuit_stats(self) -> CircuitBreakerStats:
        return self._breaker.stats()
