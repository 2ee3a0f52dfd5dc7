"""
Message Send Service

The inbound "send this message to these recipients" flow:

    1. Admit each recipient against the sending actor's token bucket
    2. Record usage for every admitted recipient and a violation for every
       rejected one
    3. Broadcast the admitted recipients through the delivery pipeline
    4. Report successful / failed / rate-limited recipients to the caller
"""

from sms_delivery.core.logging.logger import bind_delivery_context, clear_delivery_context, get_logger
from sms_delivery.core.resilience.rate_limiter import TokenBucketRateLimiter
from sms_delivery.core.resilience.violations import ViolationTracker
from sms_delivery.delivery.models import DeliveryOptions, SendReport
from sms_delivery.delivery.pipeline import DeliveryPipeline

logger = get_logger(__name__)


class MessageSendService:
    """
    Rate limiting in front of the delivery pipeline.

    Usage:
        service = MessageSendService(limiter, pipeline, violations)
        report = await service.send(
            actor="user:42",
            recipients=["+15550100", "+15550101"],
            body="Service moved to 11am",
            tenant_id="church-7",
            message_id="msg-991",
        )
    """

    def __init__(
        self,
        limiter: TokenBucketRateLimiter,
        pipeline: DeliveryPipeline,
        violations: ViolationTracker | None = None,
        endpoint: str = "messages.send",
    ):
        self._limiter = limiter
        self._pipeline = pipeline
        self._violations = violations
        self._endpoint = endpoint

    async def send(
        self,
        actor: str,
        recipients: list[str],
        body: str,
        tenant_id: str,
        message_id: str,
        options: DeliveryOptions | None = None,
    ) -> SendReport:
        """
        Rate-limit and deliver a message.

        STAGE-DLV.0: Send request

        Returns:
            SendReport; nothing is raised for rate limiting or delivery outcomes
        """
        bind_delivery_context(message_id, tenant_id)
        try:
            admitted: list[str] = []
            rate_limited: list[str] = []
            for recipient in dict.fromkeys(recipients):
                if await self._limiter.admit(actor):
                    admitted.append(recipient)
                else:
                    rate_limited.append(recipient)

            if rate_limited:
                logger.warning(
                    "Recipients rejected by rate limiter",
                    stage="DLV.0",
                    actor=actor,
                    rejected=len(rate_limited),
                )
                if self._violations is not None:
                    for _ in rate_limited:
                        await self._violations.record(actor, self._endpoint)

            if admitted and self._violations is not None:
                for _ in admitted:
                    await self._violations.record_usage(actor, self._endpoint)

            report = SendReport(message_id=message_id, rate_limited=rate_limited)
            if not admitted:
                return report

            broadcast = await self._pipeline.deliver_many(admitted, body, tenant_id, message_id, options)
            report.successful = [r.recipient for r in broadcast.successful]
            report.failed = [r.recipient for r in broadcast.failed]
            report.dead_letter_count = broadcast.dead_letter_count
            return report
        finally:
            clear_delivery_context()
