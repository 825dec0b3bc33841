from __future__ import annotations

import asyncio

import pytest

from signal_engine.resilience.bulkheads import FetchBulkhead, run_io
from signal_engine.resilience.circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitOpenError
from signal_engine.resilience.degradation import build_degradation
from signal_engine.resilience.timeouts import bounded_timeout, deadline_low, reset_deadline, set_deadline_ms, time_left_ms


class FakeClock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def _boom() -> None:
    raise RuntimeError("boom")


def test_breaker_opens_after_threshold_and_recovers() -> None:
    clock = FakeClock()
    b = CircuitBreaker("feed", failure_threshold=2, recovery_timeout_sec=30, clock=clock)
    for _ in range(2):
        with pytest.raises(RuntimeError):
            b.call(_boom)
    assert b.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        b.call(lambda: 1)

    clock.t = 30.0
    assert b.state == "HALF_OPEN"
    assert b.call(lambda: 7) == 7
    assert b.state == "CLOSED"
    assert b.snapshot().failures == 0


def test_half_open_failure_reopens_and_limits_trial_calls() -> None:
    clock = FakeClock()
    b = CircuitBreaker("fixture", failure_threshold=1, recovery_timeout_sec=10, clock=clock)
    b.record_failure()
    clock.t = 10.0
    assert b.allow()
    assert not b.allow()
    b.record_failure()
    snap = b.snapshot()
    assert snap.state == "OPEN"
    assert snap.opened_at == 10.0
    assert snap.to_dict()["name"] == "fixture"


def test_breaker_call_async() -> None:
    b = CircuitBreaker("async", failure_threshold=1, clock=FakeClock())

    async def ok() -> str:
        return "ok"

    async def bad() -> str:
        raise ValueError("bad")

    async def scenario() -> None:
        assert await b.call_async(ok) == "ok"
        with pytest.raises(ValueError):
            await b.call_async(bad)
        with pytest.raises(CircuitOpenError):
            await b.call_async(ok)

    asyncio.run(scenario())


def test_cancelled_trial_call_reopens_then_recovers() -> None:
    clock = FakeClock()
    b = CircuitBreaker("feed.fixture", failure_threshold=1, recovery_timeout_sec=30, clock=clock)
    bulkhead = FetchBulkhead(concurrency=1, timeout_seconds=0.05)
    b.record_failure()

    async def hang() -> dict:
        await asyncio.sleep(10)
        return {}

    async def ok() -> dict:
        return {"id": 1}

    async def scenario() -> None:
        clock.t = 30.0
        assert await bulkhead.run(lambda: b.call_async(hang), label="fixture") is None
        snap = b.snapshot()
        assert snap.state == "OPEN"
        assert snap.half_open_calls == 0

        clock.t = 60.0
        assert await bulkhead.run(lambda: b.call_async(ok), label="fixture") == {"id": 1}
        assert b.state == "CLOSED"

    asyncio.run(scenario())


def test_abandoned_trial_call_frees_half_open_slot() -> None:
    clock = FakeClock()
    b = CircuitBreaker("fixture", failure_threshold=1, recovery_timeout_sec=10, clock=clock)
    b.record_failure()
    clock.t = 10.0
    assert b.allow()
    clock.t = 15.0
    assert not b.allow()
    clock.t = 20.0
    assert b.state == "HALF_OPEN"
    assert b.allow()
    b.record_success()
    assert b.state == "CLOSED"


def test_registry_reuses_breakers() -> None:
    reg = BreakerRegistry(failure_threshold=3)
    assert reg.get("feed.live") is reg.get("feed.live")
    assert reg.get("") is reg.get("default")
    assert sorted(s.name for s in reg.snapshots()) == ["default", "feed.live"]


def test_bulkhead_caps_concurrency() -> None:
    bulkhead = FetchBulkhead(concurrency=3, timeout_seconds=2.0)

    async def work(i: int) -> int:
        await asyncio.sleep(0.01)
        return i

    async def scenario() -> list[int | None]:
        return await asyncio.gather(*(bulkhead.run(lambda i=i: work(i), label=str(i)) for i in range(12)))

    out = asyncio.run(scenario())
    assert out == list(range(12))
    assert 1 <= bulkhead.peak_in_flight <= 3


def test_bulkhead_turns_timeouts_and_errors_into_none() -> None:
    bulkhead = FetchBulkhead(concurrency=2, timeout_seconds=0.05)

    async def slow() -> int:
        await asyncio.sleep(1.0)
        return 1

    async def broken() -> int:
        raise RuntimeError("down")

    async def scenario() -> tuple[int | None, int | None]:
        return await bulkhead.run(slow, label="slow"), await bulkhead.run(broken, label="broken")

    assert asyncio.run(scenario()) == (None, None)


def test_bulkhead_skips_work_when_deadline_exhausted() -> None:
    bulkhead = FetchBulkhead(concurrency=1, timeout_seconds=1.0)
    called = []

    async def work() -> int:
        called.append(1)
        return 1

    async def scenario() -> int | None:
        token = set_deadline_ms(1)
        try:
            await asyncio.sleep(0.01)
            return await bulkhead.run(work)
        finally:
            reset_deadline(token)

    assert asyncio.run(scenario()) is None
    assert called == []


def test_deadline_bounds_timeouts() -> None:
    assert time_left_ms() is None
    assert bounded_timeout(5.0) == 5.0
    assert not deadline_low()
    token = set_deadline_ms(500)
    try:
        assert bounded_timeout(5.0) <= 0.5
        assert deadline_low(1000)
    finally:
        reset_deadline(token)
    assert time_left_ms() is None


def test_run_io_executes_in_pool() -> None:
    assert asyncio.run(run_io(sum, [1, 2, 3])) == 6


def test_degradation_levels() -> None:
    ok = build_degradation(feed_unavailable=False)
    assert ok.level == 0 and not ok.degraded and ok.warnings == []
    d = build_degradation(feed_unavailable=True, fallback_failures=2, sink_failed=True)
    assert d.level == 2
    assert d.warnings == ["feed_unavailable", "fixture_fallback_failed:2", "sink_failed"]
    assert build_degradation(feed_unavailable=False, match_errors=1).level == 1
