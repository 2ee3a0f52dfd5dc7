"""
Shared Store Exceptions

All exceptions raised at the shared store boundary (Redis or in-memory).
"""

from sms_delivery.core.exceptions.base import DeliveryBaseError


class StoreError(DeliveryBaseError):
    """Base exception for shared store errors."""
    pass


class StoreUnavailableError(StoreError):
    """
    Raised when the shared store cannot serve a request.

    Callers decide the failure direction: the rate limiter admits (fail open),
    the job lock refuses to run (fail closed).
    """
    pass


class StoreTimeoutError(StoreUnavailableError):
    """Raised when a store call exceeds the configured operation timeout."""
    pass
