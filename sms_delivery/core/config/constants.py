"""
System Constants and Enumerations

This module defines constants and enumerations shared across the delivery
reliability layer.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for store key prefixes and magic numbers
- Type-safe enums for state management
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the `stage` field of log entries.

    Format: {PREFIX}_{DESCRIPTIVE_NAME}
    """

    RATE_LIMITING = "RL_RATE_LIMITING"
    CIRCUIT_BREAKER = "CB_CIRCUIT_BREAKER"
    DELIVERY = "DLV_DELIVERY"
    DEAD_LETTER = "DLQ_DEAD_LETTER"
    JOB_LOCK = "LOCK_JOB_LOCK"
    SCHEDULER = "JOB_SCHEDULER"
    DISPATCH = "DSP_DISPATCH"
    STORE = "STORE_SHARED_STORE"


# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, requests allowed
    OPEN: Failing fast, requests blocked
    HALF_OPEN: Testing recovery, probe requests allowed
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Abuse Severity
# ============================================================================


class AbuseSeverity(str, Enum):
    """Severity tiers for rate limit violation reports."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================================
# Dispatch Job Status
# ============================================================================


class DispatchStatus(str, Enum):
    """Lifecycle of a broadcast job handed to the dispatcher."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Shared Store Keys
# ============================================================================

KEY_RATE_LIMIT = "rate_limit:"
KEY_VIOLATIONS = "rate_limit_violations:"
KEY_USAGE = "rate_limit_usage:"
KEY_DEAD_LETTER = "dlq:"
KEY_DEAD_LETTER_INDEX = "dlq:messages"
KEY_JOB_LOCK = "job:"

# ============================================================================
# Abuse Detection Thresholds
# ============================================================================

VIOLATIONS_MEDIUM_THRESHOLD = 50  # > 50 in the rolling window
VIOLATIONS_HIGH_THRESHOLD = 100  # > 100 in the rolling window
VIOLATIONS_SPIKE_THRESHOLD = 10  # > 10 within the spike window
VIOLATIONS_SPIKE_WINDOW_SECONDS = 60 * 60

# ============================================================================
# Delivery
# ============================================================================

CIRCUIT_OPEN_REASON = "Circuit breaker OPEN - service unavailable"
CARRIER_DEPENDENCY = "carrier-api"
