"""
Circuit Breaker
===============

Per-source failure isolation for metric fetches. The breaker is an explicit
CLOSED / OPEN / HALF_OPEN state machine behind ``allow()``,
``record_success()`` and ``record_failure()``; locking is internal.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..core.config import settings
from ..core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # seconds
    success_threshold: int = 1  # for half-open state

    @classmethod
    def from_settings(cls) -> CircuitBreakerConfig:
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout_seconds,
            success_threshold=settings.breaker_success_threshold,
        )


@dataclass
class CircuitBreakerMetrics:
    """Circuit breaker counters."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_state_change: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_failure: datetime | None = None


class CircuitBreaker:
    """Circuit breaker for a single metric source."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False
        self.metrics = CircuitBreakerMetrics()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def allow(self) -> bool:
        """Whether a call may go through now. Never blocks on I/O."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._clock() - (self._opened_at or 0.0) >= self.config.recovery_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    self.metrics.rejected_calls += 1
                    return False

            if self._state == CircuitState.HALF_OPEN:
                # one probe at a time
                if self._probe_in_flight:
                    self.metrics.rejected_calls += 1
                    return False
                self._probe_in_flight = True

            self.metrics.total_calls += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            self.metrics.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self.metrics.failed_calls += 1
            self.metrics.last_failure = datetime.now(timezone.utc)
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._transition(CircuitState.OPEN)
                return

            self._failure_count += 1
            if self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        # caller holds self._lock
        old_state = self._state
        self._state = new_state
        self.metrics.last_state_change = datetime.now(timezone.utc)
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._probe_in_flight = False
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"Circuit breaker '{self.name}' transitioned {old_state.value} -> {new_state.value}")


class CircuitBreakerRegistry:
    """
    Breakers keyed by ``(cluster, source)``.

    Creation is guarded per cluster so reconciliations of different clusters
    never contend on one lock.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig.from_settings()
        self._clock = clock
        self._breakers: dict[str, dict[str, CircuitBreaker]] = {}
        self._cluster_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, cluster_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._cluster_locks.get(cluster_key)
            if lock is None:
                lock = self._cluster_locks[cluster_key] = threading.Lock()
            return lock

    def get(self, cluster_key: str, source: str) -> CircuitBreaker:
        with self._lock_for(cluster_key):
            per_cluster = self._breakers.setdefault(cluster_key, {})
            breaker = per_cluster.get(source)
            if breaker is None:
                breaker = per_cluster[source] = CircuitBreaker(
                    f"{cluster_key}:{source}", self.config, self._clock
                )
            return breaker

    def states(self, cluster_key: str) -> dict[str, CircuitState]:
        with self._lock_for(cluster_key):
            return {source: b.state for source, b in self._breakers.get(cluster_key, {}).items()}

    def forget(self, cluster_key: str) -> None:
        with self._registry_lock:
            self._cluster_locks.pop(cluster_key, None)
            self._breakers.pop(cluster_key, None)
