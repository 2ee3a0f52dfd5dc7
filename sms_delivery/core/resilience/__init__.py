"""
Resilience primitives: circuit breaker, token bucket rate limiter, violation
tracking and the distributed job lock.
"""

from sms_delivery.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
)
from sms_delivery.core.resilience.job_lock import DistributedJobLock
from sms_delivery.core.resilience.rate_limiter import Bucket, RateLimitStatus, TokenBucketRateLimiter
from sms_delivery.core.resilience.store_guard import guarded_call
from sms_delivery.core.resilience.violations import AbuseReport, UsageStats, Violation, ViolationTracker

__all__ = [
    "AbuseReport",
    "Bucket",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "DistributedJobLock",
    "RateLimitStatus",
    "TokenBucketRateLimiter",
    "UsageStats",
    "Violation",
    "ViolationTracker",
    "guarded_call",
]
