"""
Rate Limiting Exceptions
"""

from sms_delivery.core.exceptions.base import DeliveryBaseError


class RateLimitError(DeliveryBaseError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised by callers that prefer an exception over a False admit decision.

    Details carry `retry_after_seconds` and `remaining` from the bucket status.
    """
    pass


class InvalidRateLimitConfigError(RateLimitError):
    """Raised for a non-positive capacity, window or cost."""
    pass
