"""
Core Module

Foundational components: configuration, logging, exceptions, store and
sender interfaces, and the resilience primitives.
"""

from .exceptions import (
    CircuitBreakerOpenError,
    ConfigurationError,
    DeliveryBaseError,
    LockNotAcquiredError,
    RateLimitExceededError,
    StoreUnavailableError,
    UpstreamSendError,
)
from .logging import (
    bind_delivery_context,
    clear_delivery_context,
    get_logger,
    log_stage,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_delivery_context",
    "clear_delivery_context",
    "log_stage",
    "DeliveryBaseError",
    "ConfigurationError",
    "StoreUnavailableError",
    "CircuitBreakerOpenError",
    "RateLimitExceededError",
    "UpstreamSendError",
    "LockNotAcquiredError",
]
