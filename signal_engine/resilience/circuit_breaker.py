from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Awaitable, Callable, TypeVar


T = TypeVar("T")

logger = logging.getLogger(__name__)


class CircuitOpenError(RuntimeError):
    pass


@dataclass
class CircuitSnapshot:
    name: str
    state: str
    failures: int
    opened_at: float | None
    half_open_calls: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "opened_at": self.opened_at,
            "half_open_calls": self.half_open_calls,
        }


class CircuitBreaker:
    def __init__(
        self,
        name: str = "default",
        *,
        failure_threshold: int = 5,
        recovery_timeout_sec: float = 30.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._name = str(name)
        self._failure_threshold = max(1, int(failure_threshold))
        self._recovery_timeout_sec = float(recovery_timeout_sec)
        self._half_open_max_calls = max(1, int(half_open_max_calls))
        self._clock = clock or time.time
        self._lock = Lock()
        self._state = "CLOSED"
        self._failures = 0
        self._opened_at: float | None = None
        self._half_open_calls = 0
        self._trial_started_at: float | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> str:
        with self._lock:
            self._transition_if_needed(self._clock())
            return self._state

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            self._transition_if_needed(self._clock())
            return CircuitSnapshot(
                name=self._name,
                state=str(self._state),
                failures=int(self._failures),
                opened_at=float(self._opened_at) if isinstance(self._opened_at, (int, float)) else None,
                half_open_calls=int(self._half_open_calls),
            )

    def _transition_if_needed(self, now: float) -> None:
        if self._state == "OPEN":
            opened_at = float(self._opened_at or 0.0)
            if (now - opened_at) >= self._recovery_timeout_sec:
                self._state = "HALF_OPEN"
                self._half_open_calls = 0
                self._trial_started_at = None
        elif self._state == "HALF_OPEN" and self._half_open_calls >= self._half_open_max_calls:
            started = self._trial_started_at
            if started is not None and (now - started) >= self._recovery_timeout_sec:
                logger.warning("circuit trial call abandoned name=%s", self._name)
                self._half_open_calls = 0
                self._trial_started_at = None

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            self._transition_if_needed(now)
            if self._state == "OPEN":
                return False
            if self._state == "HALF_OPEN":
                if self._half_open_calls >= self._half_open_max_calls:
                    return False
                self._half_open_calls += 1
                self._trial_started_at = float(now)
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == "HALF_OPEN":
                logger.info("circuit closed name=%s", self._name)
            self._state = "CLOSED"
            self._failures = 0
            self._opened_at = None
            self._half_open_calls = 0
            self._trial_started_at = None

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures += 1
            if self._state == "HALF_OPEN" or self._failures >= self._failure_threshold:
                if self._state != "OPEN":
                    logger.warning("circuit open name=%s failures=%s", self._name, self._failures)
                self._state = "OPEN"
                self._opened_at = float(now)
                self._half_open_calls = 0
                self._trial_started_at = None

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self.allow():
            raise CircuitOpenError(f"circuit_open:{self._name}")
        try:
            out = fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return out

    async def call_async(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if not self.allow():
            raise CircuitOpenError(f"circuit_open:{self._name}")
        try:
            out = await fn(*args, **kwargs)
        except (Exception, asyncio.CancelledError):
            self.record_failure()
            raise
        self.record_success()
        return out


class BreakerRegistry:
    def __init__(self, *, failure_threshold: int = 5, recovery_timeout_sec: float = 30.0) -> None:
        self._failure_threshold = int(failure_threshold)
        self._recovery_timeout_sec = float(recovery_timeout_sec)
        self._lock = Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        k = str(name or "").strip() or "default"
        with self._lock:
            b = self._breakers.get(k)
            if b is None:
                b = CircuitBreaker(k, failure_threshold=self._failure_threshold, recovery_timeout_sec=self._recovery_timeout_sec)
                self._breakers[k] = b
            return b

    def snapshots(self) -> list[CircuitSnapshot]:
        with self._lock:
            items = list(self._breakers.values())
        return [b.snapshot() for b in items]
