from __future__ import annotations

from signal_engine.lifecycle.manager import EXPIRED_BACKLOG, SignalLifecycleManager
from signal_engine.lifecycle.markets import LifecycleConfig, MarketConfig, market_bucket, market_family
from signal_engine.models import STATE_ORDER, SignalCandidate, SignalState


def _cand(market: str = "over_2.5", conf: float = 80.0, *, match_id: str = "m1", created: float = 0.0, ttl: int = 900, **kw) -> SignalCandidate:
    return SignalCandidate(
        match_id=match_id,
        market=market,
        selection=kw.pop("selection", "Over 2.5"),
        confidence=conf,
        ttl_seconds=ttl,
        created_unix=created,
        last_update_unix=created,
        **kw,
    )


def test_market_buckets() -> None:
    assert market_bucket("over_2.5") == "ou"
    assert market_bucket("UNDER_1.5") == "ou"
    assert market_bucket("btts_yes") == "btts"
    assert market_bucket("next_goal_home") == "next_goal"
    assert market_bucket("corners_over_9.5") == "other"
    assert market_family("corners_over_9.5") == "corners"
    assert market_family("match_winner") == "other"


def test_promotion_requires_maturation() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=60))
    mgr.update([_cand(conf=80)], now=0.0)
    assert mgr.get("m1:over_2.5").state == SignalState.CANDIDATE
    mgr.update([_cand(conf=80)], now=59.0)
    assert mgr.get("m1:over_2.5").state == SignalState.CANDIDATE
    out = mgr.update([_cand(conf=80)], now=60.0)
    assert mgr.get("m1:over_2.5").state == SignalState.ACTIVE
    assert [s.id for s in out] == ["m1:over_2.5"]


def test_low_confidence_stays_pre_and_states_only_move_forward() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(conf=40)], now=0.0)
    assert mgr.get("m1:over_2.5").state == SignalState.PRE

    mgr.update([_cand(conf=55)], now=1.0)
    assert mgr.get("m1:over_2.5").state == SignalState.CANDIDATE

    mgr.update([_cand(conf=70)], now=2.0)
    assert mgr.get("m1:over_2.5").state == SignalState.ACTIVE

    seen = [mgr.get("m1:over_2.5").state]
    for t, conf in ((3.0, 10.0), (4.0, 90.0)):
        mgr.update([_cand(conf=conf)], now=t)
        seen.append(mgr.get("m1:over_2.5").state)
    order = [STATE_ORDER[s] for s in seen]
    assert order == sorted(order)
    assert mgr.get("m1:over_2.5").confidence == 90.0


def test_illiquid_candidate_never_promotes() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(conf=95, liquidity_ok=False)], now=0.0)
    assert mgr.get("m1:over_2.5").state == SignalState.PRE


def test_merge_keeps_creation_time_and_ttl() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(conf=80, ttl=600, created=0.0, meta={"evaluation_id": "eval_a"})], now=0.0)
    mgr.update([_cand(conf=82, ttl=9999, created=500.0, minute=71, meta={"action": "high"})], now=500.0)
    s = mgr.get("m1:over_2.5")
    assert s.created_unix == 0.0
    assert s.ttl_seconds == 600
    assert s.minute == 71
    assert s.meta == {"evaluation_id": "eval_a", "action": "high"}
    assert s.ttl_left(500.0) == 100.0


def test_future_creation_time_is_clamped_to_now() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(created=1000.0)], now=10.0)
    assert mgr.get("m1:over_2.5").created_unix == 10.0


def test_expired_signals_are_removed_and_drained() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(ttl=100)], now=0.0)
    assert mgr.update([], now=99.0)
    assert mgr.update([], now=100.0) == []
    assert mgr.get("m1:over_2.5") is None
    drained = mgr.drain_expired()
    assert [s.id for s in drained] == ["m1:over_2.5"]
    assert drained[0].state == SignalState.EXPIRED
    assert mgr.drain_expired() == []


def test_cooldown_blocks_reactivation_of_same_identity() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0, cooldown_seconds=300))
    mgr.update([_cand(ttl=100, created=0.0)], now=0.0)
    assert mgr.get("m1:over_2.5").state == SignalState.ACTIVE

    mgr.update([], now=110.0)
    assert mgr.get("m1:over_2.5") is None

    mgr.update([_cand(ttl=1000, created=120.0)], now=120.0)
    assert mgr.get("m1:over_2.5").state == SignalState.CANDIDATE
    assert mgr.in_cooldown("m1:over_2.5", now=120.0)

    mgr.update([_cand(ttl=1000, created=120.0)], now=299.0)
    assert mgr.get("m1:over_2.5").state == SignalState.CANDIDATE

    mgr.update([_cand(ttl=1000, created=120.0)], now=300.0)
    assert mgr.get("m1:over_2.5").state == SignalState.ACTIVE


def test_per_match_bucket_limit_keeps_highest_confidence() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    batch = [
        _cand("over_1.5", 70.0),
        _cand("over_2.5", 90.0),
        _cand("under_3.5", 80.0),
        _cand("next_goal_home", 75.0),
    ]
    out = mgr.update(batch, now=0.0)
    assert [s.market for s in out] == ["over_2.5", "under_3.5", "next_goal_home"]

    snap = mgr.get_snapshot(now=0.0)
    assert [s.market for s in snap.active] == ["over_2.5", "under_3.5", "next_goal_home"]
    assert snap.counts == {"PRE": 0, "CANDIDATE": 0, "ACTIVE": 4}


def test_global_active_limit() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0, max_active=3))
    batch = [_cand("over_2.5", 66.0 + i, match_id=f"m{i}") for i in range(6)]
    out = mgr.update(batch, now=0.0)
    assert [s.match_id for s in out] == ["m5", "m4", "m3"]


def test_snapshot_is_idempotent_for_fixed_time() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(meta={"evaluation_id": "eval_1"}), _cand("btts_yes", 50.0)], now=0.0)
    a = mgr.get_snapshot(now=30.0)
    b = mgr.get_snapshot(now=30.0)
    assert a.to_dict() == b.to_dict()
    assert a.active[0].ttl_left == 870
    assert a.active[0].evaluation_id == "eval_1"
    assert a.counts["PRE"] == 0
    assert a.counts["CANDIDATE"] == 1


def test_capacity_counts_other_active_signals_in_bucket() -> None:
    markets = {"ou": MarketConfig(enabled=True, min_confidence=65.0, max_signals_per_match=1)}
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0, markets=markets))
    assert mgr.has_capacity("m1", "over_2.5")
    mgr.update([_cand("over_2.5")], now=0.0)
    assert mgr.active_count("m1", "under_2.5") == 1
    assert not mgr.has_capacity("m1", "under_2.5")
    assert mgr.has_capacity("m1", "over_2.5")
    assert mgr.has_capacity("m2", "under_2.5")


def test_stats_sweep_and_clear() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0, cooldown_seconds=300))
    mgr.update([_cand(), _cand("btts_yes", 62.0, match_id="m2")], now=0.0)
    stats = mgr.stats(now=10.0)
    assert stats["total"] == 2
    assert stats["by_state"] == {"ACTIVE": 2}
    assert stats["by_market"] == {"ou": 1, "btts": 1}
    assert stats["matches"] == 2
    assert stats["cooldowns"] == 2

    assert mgr.sweep_cooldowns(now=299.0) == 0
    assert mgr.sweep_cooldowns(now=300.0) == 2

    mgr.clear()
    assert len(mgr) == 0
    assert mgr.get_snapshot(now=0.0).active == []


def test_bucket_limit_breaks_confidence_ties_by_ttl_left() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    batch = [
        _cand("over_0.5", 80.0, created=100.0, ttl=900),
        _cand("over_1.5", 80.0, created=0.0, ttl=900),
        _cand("over_2.5", 80.0, created=50.0, ttl=600),
        _cand("under_3.5", 75.0, created=0.0, ttl=300),
        _cand("under_4.5", 90.0, created=100.0, ttl=900),
    ]
    out = mgr.update(batch, now=100.0)
    assert [s.market for s in out] == ["under_4.5", "over_2.5"]
    assert [s.ttl_left for s in out] == [900, 550]

    snap = mgr.get_snapshot(now=100.0)
    assert [s.id for s in snap.active] == [s.id for s in out]
    assert snap.counts["ACTIVE"] == 5


def test_snapshot_hides_signals_whose_ttl_ran_out() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0))
    mgr.update([_cand(ttl=100, created=0.0)], now=0.0)

    snap = mgr.get_snapshot(now=150.0)
    assert snap.active == []
    assert snap.counts["ACTIVE"] == 0
    assert len(mgr) == 1
    assert mgr.drain_expired() == []

    assert mgr.update([], now=150.0) == []
    assert len(mgr) == 0


def test_undrained_expired_backlog_is_bounded() -> None:
    mgr = SignalLifecycleManager(LifecycleConfig(maturation_seconds=0, max_active=1))
    batch = [_cand(match_id=f"m{i}", ttl=10) for i in range(EXPIRED_BACKLOG + 5)]
    mgr.update(batch, now=0.0)
    mgr.update([], now=10.0)
    drained = mgr.drain_expired()
    assert len(drained) == EXPIRED_BACKLOG
    assert drained[-1].match_id == f"m{EXPIRED_BACKLOG + 4}"
