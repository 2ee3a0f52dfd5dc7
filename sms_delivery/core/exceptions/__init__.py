"""
Exception Module

Structured exception hierarchy for the delivery reliability layer, grouped by
theme:

- **base.py**: DeliveryBaseError base class + ConfigurationError
- **store.py**: Shared store exceptions
- **circuit_breaker.py**: Circuit breaker exceptions
- **rate_limit.py**: Rate limiting exceptions
- **delivery.py**: Upstream send and dead letter exceptions
- **lock.py**: Distributed job lock exceptions

Usage:
------
```python
from sms_delivery.core.exceptions import StoreUnavailableError, UpstreamSendError
```
"""

from sms_delivery.core.exceptions.base import ConfigurationError, DeliveryBaseError
from sms_delivery.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)
from sms_delivery.core.exceptions.delivery import (
    DeadLetterError,
    DeadLetterNotFoundError,
    DeliveryError,
    UpstreamSendError,
)
from sms_delivery.core.exceptions.lock import JobLockError, LockNotAcquiredError
from sms_delivery.core.exceptions.rate_limit import (
    InvalidRateLimitConfigError,
    RateLimitError,
    RateLimitExceededError,
)
from sms_delivery.core.exceptions.store import (
    StoreError,
    StoreTimeoutError,
    StoreUnavailableError,
)

__all__ = [
    # Base
    "DeliveryBaseError",
    "ConfigurationError",
    # Store
    "StoreError",
    "StoreUnavailableError",
    "StoreTimeoutError",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    # Rate Limit
    "RateLimitError",
    "RateLimitExceededError",
    "InvalidRateLimitConfigError",
    # Delivery
    "DeliveryError",
    "UpstreamSendError",
    "DeadLetterError",
    "DeadLetterNotFoundError",
    # Job Lock
    "JobLockError",
    "LockNotAcquiredError",
]
