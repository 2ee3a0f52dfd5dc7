"""
Configuration Module

Centralized, type-safe configuration for the delivery reliability layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, store key prefixes and thresholds

Usage:
------
```python
from sms_delivery.core.config import get_settings
from sms_delivery.core.config.constants import CircuitState

settings = get_settings()
threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
```

Environment Variables:
---------------------
```bash
REDIS_HOST=localhost
STORE_OPERATION_TIMEOUT=2
CB_FAILURE_THRESHOLD=5
CB_RECOVERY_TIMEOUT=60
RATE_LIMIT_CAPACITY=100
RATE_LIMIT_WINDOW_SECONDS=3600
DELIVERY_MAX_RETRIES=3
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from sms_delivery.core.config.constants import (
    CARRIER_DEPENDENCY,
    KEY_DEAD_LETTER,
    KEY_DEAD_LETTER_INDEX,
    KEY_JOB_LOCK,
    KEY_RATE_LIMIT,
    KEY_USAGE,
    KEY_VIOLATIONS,
    AbuseSeverity,
    CircuitState,
    DispatchStatus,
    Stage,
)
from sms_delivery.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "reload_settings",
    # Enums
    "AbuseSeverity",
    "CircuitState",
    "DispatchStatus",
    "Stage",
    # Store keys
    "KEY_RATE_LIMIT",
    "KEY_VIOLATIONS",
    "KEY_USAGE",
    "KEY_DEAD_LETTER",
    "KEY_DEAD_LETTER_INDEX",
    "KEY_JOB_LOCK",
    "CARRIER_DEPENDENCY",
]
