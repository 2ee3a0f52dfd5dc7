"""
Delivery Exceptions

Only UpstreamSendError travels inside the retry loop; delivery outcomes are
always returned to callers as result objects.
"""

from sms_delivery.core.exceptions.base import DeliveryBaseError


class DeliveryError(DeliveryBaseError):
    """Base exception for delivery errors."""
    pass


class UpstreamSendError(DeliveryError):
    """
    A single carrier send failed (error, rejection or timeout).

    Retried per the backoff policy and counted by the circuit breaker.
    """
    pass


class DeadLetterError(DeliveryError):
    """Base exception for dead letter store errors."""
    pass


class DeadLetterNotFoundError(DeadLetterError):
    """Raised when a dead letter entry does not exist (never stored, replayed or expired)."""
    pass
