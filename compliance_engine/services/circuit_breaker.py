"""Circuit breaker guarding calls to the remote response store."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from compliance_engine.errors.exceptions import RemotePersistenceError


class CircuitState(str, Enum):
    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls fail fast
    HALF_OPEN = "half_open"  # A probe call is allowed


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # Seconds open before a probe is allowed
    half_open_max_calls: int = 1
    success_threshold: int = 1  # Probe successes needed to close


@dataclass
class CircuitBreaker:
    """
    Fail fast once a remote dependency keeps failing.

    CLOSED counts consecutive failures and opens at the threshold. OPEN
    rejects calls until the recovery timeout elapses, then HALF_OPEN lets a
    limited number of probes through; a probe failure reopens the circuit.
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _probe_successes: int = field(default=0, init=False)
    _probe_calls: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _state_changed_at: float = field(default_factory=time.monotonic, init=False)
    _totals: dict[str, int] = field(
        default_factory=lambda: {"calls": 0, "failures": 0, "successes": 0, "rejected": 0},
        init=False,
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if time.monotonic() - self._opened_at >= self.config.recovery_timeout:
            self._move_to(CircuitState.HALF_OPEN)

    def _move_to(self, state: CircuitState) -> None:
        self._state = state
        self._state_changed_at = time.monotonic()
        self._probe_calls = 0
        self._probe_successes = 0
        if state == CircuitState.OPEN:
            self._opened_at = self._state_changed_at
        elif state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._opened_at = None

    def can_execute(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and (
                self._probe_calls < self.config.half_open_max_calls
            ):
                self._probe_calls += 1
                return True
            self._totals["rejected"] += 1
            return False

    def ensure_can_execute(self) -> None:
        """
        Raises:
            RemotePersistenceError: If the circuit is open
        """
        if not self.can_execute():
            raise RemotePersistenceError(
                f"Remote store unavailable ({self.name} circuit open); changes are kept locally"
            )

    def record_success(self) -> None:
        with self._lock:
            self._totals["calls"] += 1
            self._totals["successes"] += 1
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._probe_successes += 1
                if self._probe_successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._totals["calls"] += 1
            self._totals["failures"] += 1
            self._consecutive_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.config.failure_threshold
            ):
                self._move_to(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._move_to(CircuitState.CLOSED)

    def snapshot(self) -> dict[str, Any]:
        """State and lifetime counters, for health reporting."""
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "total_calls": self._totals["calls"],
                "total_failures": self._totals["failures"],
                "total_successes": self._totals["successes"],
                "rejected_calls": self._totals["rejected"],
                "time_in_current_state_seconds": round(
                    time.monotonic() - self._state_changed_at, 2
                ),
            }


class CircuitBreakerRegistry:
    """Named circuit breakers shared across the process."""

    _instance: CircuitBreakerRegistry | None = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}
        self._breaker_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> CircuitBreakerRegistry:
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop every registered breaker (for testing)."""
        with cls._lock:
            cls._instance = None

    def get_or_create(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        with self._breaker_lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(name=name, config=config or CircuitBreakerConfig())
            return self._breakers[name]

    def snapshots(self) -> dict[str, dict[str, Any]]:
        with self._breaker_lock:
            return {name: breaker.snapshot() for name, breaker in self._breakers.items()}


REMOTE_STORE_CIRCUIT_BREAKER = "remote_store"


def get_remote_store_circuit_breaker() -> CircuitBreaker:
    """Breaker for the remote response API: opens after 5 straight failures for 30 s."""
    return CircuitBreakerRegistry.get_instance().get_or_create(
        REMOTE_STORE_CIRCUIT_BREAKER,
        CircuitBreakerConfig(
            failure_threshold=5,
            recovery_timeout=30.0,
            half_open_max_calls=1,
            success_threshold=1,
        ),
    )


def get_all_circuit_breaker_snapshots() -> dict[str, dict[str, Any]]:
    return CircuitBreakerRegistry.get_instance().snapshots()
