"""
Circuit Breaker Exceptions
"""

from sms_delivery.core.exceptions.base import DeliveryBaseError


class CircuitBreakerError(DeliveryBaseError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when the circuit breaker rejects an attempt (fail fast).

    The rejected attempt never reaches the carrier. It still consumes one
    attempt of the retry budget, but it is not reported back to the breaker
    as a new failure.
    """
    pass
