"""
Circuit Breaker for the upstream carrier.

This module implements an in-process circuit breaker guarding outbound calls
to one upstream dependency (e.g. "carrier-api").

MECHANISM OF ACTION:
-------------------
1.  **Per-process State**:
    State lives in memory and is owned by one CircuitBreaker instance. A
    horizontally scaled deployment runs one independent breaker per process
    and dependency; restarting a process resets its breaker to CLOSED.

2.  **State Transitions**:
    - **CLOSED**: The dependency is healthy. Every attempt is allowed.
      - On Failure: The failure counter increments.
      - On Success: The success counter increments; failures are NOT reset.
      - Threshold Reached: failures >= failure_threshold transitions to OPEN.

    - **OPEN**: The dependency is down. Attempts are rejected (Fail Fast).
      - Recovery: Once `reset_timeout` seconds have passed since opening, the
        next `can_attempt()` transitions to HALF_OPEN and lets a probe through.

    - **HALF_OPEN**: Probing mode.
      - Behavior: Probes are allowed. Unbounded by default; `half_open_max_probes`
        caps how many may be in flight before an outcome is recorded.
      - On Success: Transition to CLOSED, failure/success counters reset to 0.
      - On Failure: Transition back to OPEN and restart the cooldown.

3.  **Thread Safety**:
    Counters and transitions are guarded by one lock, so concurrent
    deliveries never drop or double-count an outcome. State change callbacks
    run after the lock is released.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from sms_delivery.core.config.constants import CircuitState, Stage
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.logging.logger import get_logger

logger = get_logger(__name__)

StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Point-in-time snapshot of a breaker."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    total_attempts: int
    total_failures: int
    total_successes: int
    last_failure_time: float | None
    last_success_time: float | None
    opened_at: float | None
    next_recovery_attempt: float | None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """
    In-memory circuit breaker for one upstream dependency.

    Usage:
        breaker = CircuitBreaker("carrier-api", failure_threshold=5, reset_timeout=60)

        if breaker.can_attempt():
            try:
                await sender.send(to, body, tenant_id)
                breaker.record_success()
            except Exception:
                breaker.record_failure()
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int | None = None,
        reset_timeout: float | None = None,
        half_open_max_probes: int | None = None,
        clock: Callable[[], float] = time.time,
        on_state_change: StateChangeCallback | None = None,
    ):
        settings = get_settings().circuit_breaker
        self.name = name
        self.failure_threshold = (
            failure_threshold if failure_threshold is not None else settings.CB_FAILURE_THRESHOLD
        )
        self.reset_timeout = reset_timeout if reset_timeout is not None else settings.CB_RECOVERY_TIMEOUT
        self.half_open_max_probes = (
            half_open_max_probes if half_open_max_probes is not None else settings.CB_HALF_OPEN_MAX_PROBES
        )
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        if self.half_open_max_probes is not None and self.half_open_max_probes < 1:
            raise ValueError("half_open_max_probes must be >= 1")

        self._clock = clock
        self._on_state_change = on_state_change
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_attempts = 0
        self._total_failures = 0
        self._total_successes = 0
        self._half_open_probes = 0
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None
        self._opened_at: float | None = None

        logger.info(
            "Circuit breaker initialized",
            stage="CB.0",
            breaker=name,
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
            half_open_max_probes=self.half_open_max_probes,
        )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def can_attempt(self) -> bool:
        """
        Decide whether an upstream call may be made now.

        OPEN transitions to HALF_OPEN here, lazily, once the cooldown elapsed.
        """
        transition = None
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed < self.reset_timeout:
                    return False
                transition = self._transition(CircuitState.HALF_OPEN)
                self._half_open_probes = 1
                allowed = True
            elif self.half_open_max_probes is not None and self._half_open_probes >= self.half_open_max_probes:
                allowed = False
            else:
                self._half_open_probes += 1
                allowed = True

        self._notify(transition)
        return allowed

    def record_success(self) -> None:
        """Record a successful upstream call."""
        transition = None
        with self._lock:
            self._success_count += 1
            self._total_successes += 1
            self._total_attempts += 1
            self._last_success_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                transition = self._transition(CircuitState.CLOSED)
                self._failure_count = 0
                self._success_count = 0
                self._half_open_probes = 0

        self._notify(transition)

    def record_failure(self) -> None:
        """Record a failed upstream call."""
        transition = None
        with self._lock:
            self._failure_count += 1
            self._total_failures += 1
            self._total_attempts += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                transition = self._open()
            elif self._state == CircuitState.HALF_OPEN:
                transition = self._open()

        self._notify(transition)

    def stats(self) -> CircuitBreakerStats:
        with self._lock:
            next_recovery = None
            if self._state == CircuitState.OPEN and self._opened_at is not None:
                next_recovery = self._opened_at + self.reset_timeout
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                total_attempts=self._total_attempts,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                last_failure_time=self._last_failure_time,
                last_success_time=self._last_success_time,
                opened_at=self._opened_at,
                next_recovery_attempt=next_recovery,
            )

    def reset(self) -> None:
        """Force the breaker back to CLOSED with zeroed counters (operator action)."""
        transition = None
        with self._lock:
            if self._state != CircuitState.CLOSED:
                transition = self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._half_open_probes = 0
            self._opened_at = None
        self._notify(transition)

    # ------------------------------------------------------------------
    # Internals (called with the lock held)
    # ------------------------------------------------------------------

    def _open(self) -> tuple[CircuitState, CircuitState]:
        transition = self._transition(CircuitState.OPEN)
        self._opened_at = self._clock()
        self._half_open_probes = 0
        return transition

    def _transition(self, new_state: CircuitState) -> tuple[CircuitState, CircuitState]:
        old_state = self._state
        self._state = new_state
        return old_state, new_state

    def _notify(self, transition: tuple[CircuitState, CircuitState] | None) -> None:
        if transition is None:
            return
        old_state, new_state = transition
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.name}' changed state to {new_state.value}",
            stage=Stage.CIRCUIT_BREAKER.value,
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self._failure_count,
        )
        if self._on_state_change is not None:
            try:
                self._on_state_change(self.name, old_state, new_state)
            except Exception as e:
                logger.error("State change callback failed", stage="CB.9", breaker=self.name, error=str(e))


class CircuitBreakerRegistry:
    """
    Creates and caches one CircuitBreaker per dependency name.

    Constructed explicitly and passed to whoever needs it; there is no
    module-level registry.
    """

    def __init__(
        self,
        failure_threshold: int | None = None,
        reset_timeout: float | None = None,
        half_open_max_probes: int | None = None,
        clock: Callable[[], float] = time.time,
        on_state_change: StateChangeCallback | None = None,
    ):
        self._defaults = {
            "failure_threshold": failure_threshold,
            "reset_timeout": reset_timeout,
            "half_open_max_probes": half_open_max_probes,
        }
        self._clock = clock
        self._on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_breaker(self, name: str, **overrides: Any) -> CircuitBreaker:
        """Get the breaker for `name`, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                options = {**self._defaults, **overrides}
                breaker = CircuitBreaker(
                    name,
                    clock=self._clock,
                    on_state_change=self._on_state_change,
                    **options,
                )
                self._breakers[name] = breaker
            return breaker

    def get_all_stats(self) -> dict[str, CircuitBreakerStats]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.stats() for breaker in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
