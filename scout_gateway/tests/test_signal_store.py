from __future__ import annotations

import asyncio

from scout_gateway.app.state import SignalStore
from signal_engine.models import ActiveSignalSnapshot, ActiveSignalSummary


def _summary(sid_market: str = "over_2.5", *, created: float = 100.0, eval_id: str | None = "eval_1") -> ActiveSignalSummary:
    return ActiveSignalSummary(
        id=f"7:{sid_market}",
        match_id="7",
        market=sid_market,
        selection="Over 2.5",
        home_team="Inter",
        away_team="Milan",
        league="Serie A",
        confidence=76.0,
        minute=52,
        ttl_left=600,
        state="ACTIVE",
        reasoning="pressure",
        created_unix=created,
        evaluation_id=eval_id,
    )


def _snap(*items: ActiveSignalSummary, at: float = 200.0) -> ActiveSignalSnapshot:
    return ActiveSignalSnapshot(active=list(items), counts={"ACTIVE": len(items)}, generated_at_unix=at)


def test_publish_is_idempotent_per_activation(tmp_path) -> None:
    store = SignalStore(str(tmp_path / "db" / "state.sqlite3"))
    assert store.db_enabled

    assert asyncio.run(store.publish(_snap(_summary()))) == ["7:over_2.5"]
    assert asyncio.run(store.publish(_snap(_summary(), at=230.0))) == []
    assert asyncio.run(store.publish(_snap(_summary(created=900.0, eval_id="eval_2"), at=950.0))) == ["7:over_2.5"]
    assert asyncio.run(store.publish(_snap())) == []

    rows = asyncio.run(store.recent(10))
    assert [r["evaluation_id"] for r in rows] == ["eval_2", "eval_1"]
    assert rows[1]["activated_unix"] == 200.0
    assert rows[1]["outcome"] is None


def test_find_and_record_outcome(tmp_path) -> None:
    store = SignalStore(str(tmp_path / "state.sqlite3"))
    asyncio.run(store.publish(_snap(_summary(), _summary("btts_yes", eval_id=None))))

    assert asyncio.run(store.find_evaluation("7:over_2.5")) == "eval_1"
    assert asyncio.run(store.find_evaluation("7:btts_yes")) is None
    assert asyncio.run(store.find_evaluation("nope")) is None

    assert asyncio.run(store.record_outcome("eval_1", "won", 12.5)) == 1
    assert asyncio.run(store.record_outcome("eval_1", "lost", -1.0)) == 0
    assert asyncio.run(store.find_evaluation("7:over_2.5")) is None
    assert asyncio.run(store.outcome_counts()) == {"open": 1, "won": 1}

    won = [r for r in asyncio.run(store.recent(5)) if r["outcome"] == "won"]
    assert won[0]["profit"] == 12.5
    assert won[0]["resolved_unix"] is not None


def test_unwritable_path_disables_store(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    store = SignalStore(str(blocker / "state.sqlite3"))
    assert not store.db_enabled
    assert asyncio.run(store.publish(_snap(_summary()))) == []
    assert asyncio.run(store.find_evaluation("7:over_2.5")) is None
    assert asyncio.run(store.record_outcome("eval_1", "won")) == 0
    assert asyncio.run(store.recent()) == []
    assert asyncio.run(store.outcome_counts()) == {}
