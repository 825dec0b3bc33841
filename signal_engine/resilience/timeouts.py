from __future__ import annotations

import contextvars
import time

from signal_engine import config


_deadline_at: contextvars.ContextVar[float | None] = contextvars.ContextVar("tick_deadline_at_monotonic", default=None)


def default_deadline_ms() -> int:
    return config.tick_deadline_ms()


def set_deadline_ms(ms: int) -> contextvars.Token:
    d_ms = int(ms)
    if d_ms <= 0:
        return _deadline_at.set(None)
    deadline = time.monotonic() + (float(d_ms) / 1000.0)
    return _deadline_at.set(deadline)


def reset_deadline(token: contextvars.Token) -> None:
    _deadline_at.reset(token)


def deadline_at_monotonic() -> float | None:
    v = _deadline_at.get()
    return float(v) if isinstance(v, (int, float)) else None


def time_left_ms() -> int | None:
    d = deadline_at_monotonic()
    if d is None:
        return None
    left = (float(d) - time.monotonic()) * 1000.0
    return int(left) if left > 0 else 0


def bounded_timeout(timeout_seconds: float) -> float:
    left = time_left_ms()
    if left is None:
        return float(timeout_seconds)
    return min(float(timeout_seconds), float(left) / 1000.0)


def deadline_low(threshold_ms: int = 1000) -> bool:
    left = time_left_ms()
    return left is not None and left < int(threshold_ms)
