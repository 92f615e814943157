"""
Circuit breaker guarding alert delivery channels.

A mail relay or webhook endpoint that keeps timing out would otherwise add
its full timeout to every poll cycle. Once a channel trips, deliveries are
skipped until the recovery timeout has passed, then one probe delivery is
let through.
"""

from __future__ import annotations

import enum
import threading
import time
from typing import Callable

from prometheus_client import Counter, Gauge


CIRCUIT_STATE = Gauge(
    "fleet_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["name"],
)

CIRCUIT_TRIPS = Counter(
    "fleet_circuit_breaker_trips_total",
    "Number of times the circuit breaker tripped to OPEN",
    ["name"],
)


class CircuitState(enum.Enum):
    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class CircuitOpenError(Exception):
    """Raised when a delivery is attempted through an OPEN circuit."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN (retry after {retry_after:.0f}s)")


class CircuitBreaker:
    """Thread-safe breaker: CLOSED -> OPEN after N consecutive failures,
    OPEN -> HALF_OPEN after ``recovery_timeout``, HALF_OPEN -> CLOSED on
    the first success or back to OPEN on failure.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

        CIRCUIT_STATE.labels(name=name).set(CircuitState.CLOSED.value)

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        CIRCUIT_STATE.labels(name=self.name).set(state.value)

    def _refresh(self) -> None:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
            self._set_state(CircuitState.HALF_OPEN)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def call(self, func: Callable[..., object], *args: object, **kwargs: object) -> object:
        """Run *func* unless the circuit is OPEN; the lock is not held during the call."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.OPEN:
                retry_after = self.recovery_timeout - (self._clock() - self._opened_at)
                raise CircuitOpenError(self.name, max(0.0, retry_after))

        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = 0.0
            self._set_state(CircuitState.CLOSED)

    def _on_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state != CircuitState.CLOSED:
                self._set_state(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            tripped = self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold
            )
            if tripped:
                self._opened_at = self._clock()
                self._set_state(CircuitState.OPEN)
                CIRCUIT_TRIPS.labels(name=self.name).inc()
