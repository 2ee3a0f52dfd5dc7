"""
Unit Tests for Monitoring Infrastructure

Tests the Prometheus metrics collector.
"""

import pytest
from prometheus_client import REGISTRY

from sms_delivery.core.config.constants import CircuitState
from sms_delivery.core.resilience.circuit_breaker import CircuitBreaker
from sms_delivery.infrastructure.monitoring.metrics_collector import MetricsCollector, get_metrics_collector


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.unit
class TestMetricsCollector:
    """Test suite for MetricsCollector."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector()

    def test_singleton(self):
        assert get_metrics_collector() is get_metrics_collector()

    def test_delivery_counters(self, metrics):
        before = sample("sms_delivery_attempts_total", outcome="timeout")
        metrics.record_delivery_attempt("timeout")
        assert sample("sms_delivery_attempts_total", outcome="timeout") == before + 1

        before = sample("sms_delivery_results_total", status="failed")
        metrics.record_delivery_result(False)
        assert sample("sms_delivery_results_total", status="failed") == before + 1

    def test_dead_letter_counters(self, metrics):
        before = sample("sms_dead_letters_total", status="write_failed")
        metrics.record_dead_letter(False)
        assert sample("sms_dead_letters_total", status="write_failed") == before + 1

        before = sample("sms_dead_letter_replays_total", outcome="not_found")
        metrics.record_replay("not_found")
        assert sample("sms_dead_letter_replays_total", outcome="not_found") == before + 1

    def test_circuit_state_follows_breaker(self, metrics, clock):
        breaker = CircuitBreaker(
            "metrics-test", failure_threshold=1, reset_timeout=1, clock=clock,
            on_state_change=metrics.on_circuit_state_change,
        )

        breaker.record_failure()
        assert sample("sms_circuit_breaker_state", dependency="metrics-test") == 2
        assert sample("sms_circuit_breaker_transitions_total", dependency="metrics-test", to_state="open") >= 1

        clock.advance(1)
        breaker.can_attempt()
        assert sample("sms_circuit_breaker_state", dependency="metrics-test") == 1

        breaker.record_success()
        assert sample("sms_circuit_breaker_state", dependency="metrics-test") == 0

    def test_set_circuit_state(self, metrics):
        metrics.set_circuit_state("direct", CircuitState.OPEN)
        assert sample("sms_circuit_breaker_state", dependency="direct") == 2

    def test_rate_limit_and_job_metrics(self, metrics):
        before = sample("sms_rate_limit_decisions_total", decision="fail_open")
        metrics.record_rate_limit_decision("fail_open")
        assert sample("sms_rate_limit_decisions_total", decision="fail_open") == before + 1

        before = sample("sms_job_lock_outcomes_total", job="billing", outcome="contended")
        metrics.record_job_lock("billing", "contended")
        assert sample("sms_job_lock_outcomes_total", job="billing", outcome="contended") == before + 1

        metrics.record_job_duration("billing", "success", 0.3)
        assert sample("sms_job_duration_seconds_count", job="billing", status="success") >= 1

        metrics.set_dispatch_queue_depth(7)
        assert sample("sms_dispatch_queue_depth") == 7

    def test_prometheus_export(self, metrics):
        metrics.record_send_latency(0.2)
        output = metrics.get_prometheus_metrics()

        assert b"sms_send_latency_seconds" in output
        assert "text/plain" in metrics.get_content_type()
