"""
Unit Tests for CircuitBreaker

Tests state transitions (closed -> open -> half-open -> closed/open), counter
semantics, probe limiting and the registry.
"""

import threading
from unittest.mock import MagicMock

import pytest

from sms_delivery.core.config.constants import CircuitState
from sms_delivery.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("carrier-api", failure_threshold=3, reset_timeout=60, clock=clock)


def trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()


@pytest.mark.unit
class TestClosedState:
    def test_initial_state_is_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_attempt() is True

    def test_opens_after_exactly_threshold_failures(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_attempt() is True

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.can_attempt() is False

    def test_success_in_closed_does_not_reset_failures(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()

        assert breaker.stats().failure_count == 2
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_counters(self, breaker):
        breaker.record_success()
        breaker.record_failure()

        stats = breaker.stats()
        assert stats.success_count == 1
        assert stats.failure_count == 1
        assert stats.total_attempts == 2
        assert stats.total_successes == 1
        assert stats.total_failures == 1


@pytest.mark.unit
class TestOpenState:
    def test_rejects_until_reset_timeout(self, breaker, clock):
        trip(breaker)
        clock.advance(59.9)
        assert breaker.can_attempt() is False
        assert breaker.state == CircuitState.OPEN

    def test_moves_to_half_open_after_reset_timeout(self, breaker, clock):
        trip(breaker)
        clock.advance(60)
        assert breaker.can_attempt() is True
        assert breaker.state == CircuitState.HALF_OPEN

    def test_stats_report_next_recovery_attempt(self, breaker, clock):
        opened_at = clock()
        trip(breaker)

        stats = breaker.stats()
        assert stats.opened_at == opened_at
        assert stats.next_recovery_attempt == opened_at + 60

    def test_next_recovery_attempt_only_when_open(self, breaker):
        assert breaker.stats().next_recovery_attempt is None


@pytest.mark.unit
class TestHalfOpenState:
    def test_success_closes_and_resets_counters(self, breaker, clock):
        trip(breaker)
        clock.advance(60)
        breaker.can_attempt()

        breaker.record_success()

        stats = breaker.stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failure_count == 0
        assert stats.success_count == 0
        assert stats.total_attempts == 4

    def test_failure_reopens_and_restarts_cooldown(self, breaker, clock):
        trip(breaker)
        clock.advance(60)
        breaker.can_attempt()

        clock.advance(5)
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.stats().opened_at == clock()
        clock.advance(59)
        assert breaker.can_attempt() is False
        clock.advance(1)
        assert breaker.can_attempt() is True

    def test_unbounded_probes_by_default(self, breaker, clock):
        trip(breaker)
        clock.advance(60)
        assert all(breaker.can_attempt() for _ in range(10))

    def test_probe_limit(self, clock):
        breaker = CircuitBreaker(
            "carrier-api", failure_threshold=1, reset_timeout=10, half_open_max_probes=1, clock=clock
        )
        breaker.record_failure()
        clock.advance(10)

        assert breaker.can_attempt() is True
        assert breaker.can_attempt() is False

        breaker.record_success()
        assert breaker.can_attempt() is True


@pytest.mark.unit
class TestCallbacksAndReset:
    def test_state_change_callback(self, clock):
        callback = MagicMock()
        breaker = CircuitBreaker(
            "carrier-api", failure_threshold=1, reset_timeout=1, clock=clock, on_state_change=callback
        )

        breaker.record_failure()
        clock.advance(1)
        breaker.can_attempt()
        breaker.record_success()

        transitions = [c.args[1:] for c in callback.call_args_list]
        assert transitions == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_failing_callback_does_not_break_breaker(self, clock):
        breaker = CircuitBreaker(
            "carrier-api",
            failure_threshold=1,
            clock=clock,
            on_state_change=MagicMock(side_effect=RuntimeError("boom")),
        )
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_reset(self, breaker):
        trip(breaker)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().failure_count == 0
        assert breaker.can_attempt() is True

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("carrier-api", failure_threshold=0)

    def test_stats_to_dict(self, breaker):
        data = breaker.stats().to_dict()
        assert data["state"] == "closed"
        assert data["name"] == "carrier-api"


@pytest.mark.unit
class TestConcurrency:
    def test_no_failure_is_dropped_across_threads(self, clock):
        breaker = CircuitBreaker("carrier-api", failure_threshold=10_000, clock=clock)

        def hammer():
            for _ in range(500):
                breaker.record_failure()

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert breaker.stats().failure_count == 4000


@pytest.mark.unit
class TestCircuitBreakerRegistry:
    def test_get_breaker_creates_new_instance(self, clock):
        registry = CircuitBreakerRegistry(failure_threshold=2, clock=clock)
        breaker = registry.get_breaker("carrier-api")
        assert isinstance(breaker, CircuitBreaker)
        assert breaker.failure_threshold == 2

    def test_get_breaker_returns_existing_instance(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        assert registry.get_breaker("a") is registry.get_breaker("a")
        assert registry.get_breaker("a") is not registry.get_breaker("b")

    def test_overrides(self, clock):
        registry = CircuitBreakerRegistry(failure_threshold=2, clock=clock)
        assert registry.get_breaker("email", failure_threshold=7).failure_threshold == 7

    def test_get_all_stats_and_reset_all(self, clock):
        registry = CircuitBreakerRegistry(failure_threshold=1, clock=clock)
        registry.get_breaker("a").record_failure()
        registry.get_breaker("b")

        stats = registry.get_all_stats()
        assert stats["a"].state == CircuitState.OPEN
        assert stats["b"].state == CircuitState.CLOSED

        registry.reset_all()
        assert registry.get_breaker("a").state == CircuitState.CLOSED
