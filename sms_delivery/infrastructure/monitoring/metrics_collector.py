#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module provides metrics collection for the delivery reliability layer:
- Delivery attempts and results by outcome
- Dead letter writes and replays
- Circuit breaker states and transitions
- Rate limiter decisions (allowed / rejected / fail_open)
- Job lock outcomes and job durations

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Histogram buckets for latency percentiles

Components take the collector as an optional constructor argument; nothing
requires Prometheus to be scraped.
"""


from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from sms_delivery.core.config.constants import CircuitState
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Delivery metrics
DELIVERY_ATTEMPTS = Counter(
    'sms_delivery_attempts_total',
    'Upstream delivery attempts by outcome',
    ['outcome']  # success, failure, timeout, circuit_open
)

DELIVERY_RESULTS = Counter(
    'sms_delivery_results_total',
    'Final delivery results',
    ['status']  # delivered, failed
)

SEND_LATENCY = Histogram(
    'sms_send_latency_seconds',
    'Upstream send latency',
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)
)

# Dead letter metrics
DEAD_LETTERS = Counter(
    'sms_dead_letters_total',
    'Messages written to the dead letter store',
    ['status']  # stored, write_failed
)

DEAD_LETTER_REPLAYS = Counter(
    'sms_dead_letter_replays_total',
    'Dead letter replays by outcome',
    ['outcome']  # success, failure, not_found
)

# Circuit breaker metrics
CIRCUIT_BREAKER_STATE = Gauge(
    'sms_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['dependency']
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    'sms_circuit_breaker_transitions_total',
    'Circuit breaker state transitions',
    ['dependency', 'to_state']
)

# Rate limiting metrics
RATE_LIMIT_DECISIONS = Counter(
    'sms_rate_limit_decisions_total',
    'Rate limiter decisions',
    ['decision']  # allowed, rejected, fail_open
)

# Job metrics
JOB_LOCK_OUTCOMES = Counter(
    'sms_job_lock_outcomes_total',
    'Job lock outcomes',
    ['job', 'outcome']  # acquired, contended, error, released, lost
)

JOB_DURATION = Histogram(
    'sms_job_duration_seconds',
    'Recurring job run duration',
    ['job', 'status'],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0)
)

# Dispatcher metrics
DISPATCH_QUEUE_DEPTH = Gauge(
    'sms_dispatch_queue_depth',
    'Broadcast jobs waiting for a dispatcher worker'
)

# Application info
APP_INFO = Info(
    'sms_delivery_app',
    'Application information'
)

_CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class MetricsCollector:
    """
    Metrics collector for the delivery reliability layer.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()

        breakers = CircuitBreakerRegistry(on_state_change=metrics.on_circuit_state_change)
        limiter = TokenBucketRateLimiter(store, metrics=metrics)

        output = metrics.get_prometheus_metrics()
    """

    def __init__(self):
        """Initialize metrics collector."""
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Delivery Metrics
    # =========================================================================

    def record_delivery_attempt(self, outcome: str) -> None:
        """Record one attempt of the retry loop."""
        DELIVERY_ATTEMPTS.labels(outcome=outcome).inc()

    def record_delivery_result(self, success: bool) -> None:
        DELIVERY_RESULTS.labels(status="delivered" if success else "failed").inc()

    def record_send_latency(self, duration_seconds: float) -> None:
        SEND_LATENCY.observe(duration_seconds)

    # =========================================================================
    # Dead Letter Metrics
    # =========================================================================

    def record_dead_letter(self, stored: bool) -> None:
        DEAD_LETTERS.labels(status="stored" if stored else "write_failed").inc()

    def record_replay(self, outcome: str) -> None:
        DEAD_LETTER_REPLAYS.labels(outcome=outcome).inc()

    # =========================================================================
    # Circuit Breaker Metrics
    # =========================================================================

    def set_circuit_state(self, dependency: str, state: CircuitState) -> None:
        """Set circuit breaker state."""
        CIRCUIT_BREAKER_STATE.labels(dependency=dependency).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def on_circuit_state_change(self, dependency: str, old_state: CircuitState, new_state: CircuitState) -> None:
        """CircuitBreaker `on_state_change` hook."""
        self.set_circuit_state(dependency, new_state)
        CIRCUIT_BREAKER_TRANSITIONS.labels(dependency=dependency, to_state=new_state.value).inc()

    # =========================================================================
    # Rate Limiting Metrics
    # =========================================================================

    def record_rate_limit_decision(self, decision: str) -> None:
        RATE_LIMIT_DECISIONS.labels(decision=decision).inc()

    # =========================================================================
    # Job Metrics
    # =========================================================================

    def record_job_lock(self, job: str, outcome: str) -> None:
        JOB_LOCK_OUTCOMES.labels(job=job, outcome=outcome).inc()

    def record_job_duration(self, job: str, status: str, duration_seconds: float) -> None:
        JOB_DURATION.labels(job=job, status=status).observe(duration_seconds)

    def set_dispatch_queue_depth(self, depth: int) -> None:
        DISPATCH_QUEUE_DEPTH.set(depth)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
