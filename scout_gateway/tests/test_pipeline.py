from __future__ import annotations

from scout_gateway.app.pipeline import build_match_context, is_live_match, league_name, select_relevant
from signal_engine.minute.normalizer import MinuteReading
from signal_engine.models import MatchContext


def _reading(minute: int, *, stale: bool = False, guard: bool = False) -> MinuteReading:
    return MinuteReading(minute=minute, raw=minute, stale=stale, guard_applied=guard, source="time")


def test_league_name_variants() -> None:
    assert league_name({"league": {"data": {"name": " Premier League "}}}) == "Premier League"
    assert league_name({"league_id": 501}) == "League 501"
    assert league_name(None) == "Unknown League"


def test_build_match_context() -> None:
    payload = {
        "id": 19,
        "league_id": 8,
        "status": "2ND_HALF",
        "localteam": {"name": "Inter"},
        "visitorteam": {"name": "Milan"},
        "scores": {"localteam_score": 2, "visitorteam_score": 2},
        "odds": {"data": [{"market": "over_2.5", "value": 1.8}]},
    }
    ctx = build_match_context(payload, _reading(67, stale=True, guard=True))
    assert ctx.match_id == "19"
    assert ctx.league_id == 8
    assert (ctx.home_team, ctx.away_team) == ("Inter", "Milan")
    assert ctx.total_goals == 4
    assert ctx.minute == 67
    assert ctx.status == "2ND_HALF"
    assert ctx.odds == [{"market": "over_2.5", "value": 1.8}]
    assert ctx.minute_stale and ctx.minute_guarded


def test_is_live_match() -> None:
    assert is_live_match(MatchContext(match_id="1", league_id=None, minute=12))
    assert is_live_match(MatchContext(match_id="1", league_id=None, status="LIVE"))
    assert not is_live_match(MatchContext(match_id="1", league_id=None, minute=45, status="HT"))
    assert not is_live_match(MatchContext(match_id="1", league_id=None, status="NS"))
    assert not is_live_match(MatchContext(match_id="1", league_id=None))
    assert is_live_match(MatchContext(match_id="1", league_id=None), emergency_fallback=True)


def test_select_relevant_filters_and_limits() -> None:
    contexts = [MatchContext(match_id=str(i), league_id=8 if i % 2 else 9, minute=10 + i) for i in range(10)]
    contexts.append(MatchContext(match_id="x", league_id=None, minute=50))
    assert [c.match_id for c in select_relevant(contexts, league_ids=[8])] == ["1", "3", "5", "7", "9"]
    assert len(select_relevant(contexts, limit=4)) == 4
    assert len(select_relevant(contexts)) == 11
