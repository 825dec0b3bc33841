from __future__ import annotations

from signal_engine.minute.normalizer import MinuteConfig, MinuteNormalizer


def _norm(**kw) -> MinuteNormalizer:
    return MinuteNormalizer(MinuteConfig(**kw))


def test_stuck_raw_minute_inflates_without_decreasing() -> None:
    n = _norm(stale_threshold_seconds=30, cache_ttl_seconds=90)
    seq = [n.normalize("m1", 27, t).minute for t in (0.0, 33.0, 63.0, 93.0)]
    assert seq == [27, 27, 28, 28]


def test_stale_flag_only_after_threshold() -> None:
    n = _norm(stale_threshold_seconds=120)
    assert not n.normalize("m1", 40, 0.0).stale
    assert not n.normalize("m1", 40, 100.0).stale
    r = n.normalize("m1", 40, 150.0)
    assert r.stale
    assert r.minute == 42


def test_zero_raw_uses_cache_within_ttl_and_guard_afterwards() -> None:
    n = _norm(cache_ttl_seconds=90)
    assert n.normalize("m1", 55, 0.0).minute == 55
    r = n.normalize("m1", 0, 70.0)
    assert r.minute == 56
    r2 = n.normalize("m1", 0, 300.0)
    assert r2.minute >= 56
    assert r2.guard_applied


def test_raw_going_backwards_never_reported() -> None:
    n = _norm()
    assert n.normalize("m1", 60, 0.0).minute == 60
    r = n.normalize("m1", 58, 10.0)
    assert r.minute == 60
    assert r.guard_applied
    assert n.normalize("m1", 61, 20.0).minute == 61


def test_minute_is_capped() -> None:
    n = _norm(cache_ttl_seconds=3600)
    n.normalize("m1", 125, 0.0)
    r = n.normalize("m1", 0, 3000.0)
    assert r.minute == 130
    assert n.normalize("m1", 500, 3100.0).minute == 130


def test_needs_fallback_is_read_only() -> None:
    n = _norm(stale_threshold_seconds=30)
    assert n.needs_fallback("m1", 0, 0.0)
    assert n.state_for("m1") is None
    n.normalize("m1", 20, 0.0)
    assert not n.needs_fallback("m1", 20, 10.0)
    assert n.needs_fallback("m1", 20, 45.0)
    assert not n.needs_fallback("m1", 21, 45.0)
    st = n.state_for("m1")
    assert st is not None and st.last_raw_change_unix == 0.0


def test_matches_are_tracked_independently() -> None:
    n = _norm()
    n.normalize("a", 80, 0.0)
    assert n.normalize("b", 5, 1.0).minute == 5
    assert n.normalize("a", 81, 2.0).minute == 81


def test_sweep_evicts_idle_tracking_state() -> None:
    n = _norm(tracking_idle_seconds=600)
    n.normalize("old", 10, 0.0)
    n.normalize("fresh", 10, 500.0)
    assert n.sweep(700.0) == 1
    assert n.state_for("old") is None
    assert n.state_for("fresh") is not None
    assert len(n) == 1


def test_normalize_payload_uses_extraction_chain() -> None:
    n = _norm()
    r = n.normalize_payload({"id": 9, "periods": {"data": [{"minute": 33}]}}, "9", now=0.0)
    assert r.minute == 33
    assert r.source == "periods"
