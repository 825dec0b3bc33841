from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from signal_engine.minute.extractors import (
    LIVE_STATUSES,
    extract_kickoff_unix,
    extract_league_id,
    extract_match_id,
    extract_scores,
    extract_status,
    extract_teams,
)
from signal_engine.minute.normalizer import MinuteReading
from signal_engine.models import MatchContext


PAUSED_STATUSES = frozenset({"HALFTIME", "HT", "BREAK", "PAUSE", "AWAITING_PENALTIES", "AWAITING_EXTRA_TIME"})


def _odds_of(payload: dict[str, Any]) -> Any:
    odds = payload.get("odds")
    if isinstance(odds, dict) and isinstance(odds.get("data"), list):
        return odds.get("data")
    return odds


def league_name(payload: Any) -> str:
    if not isinstance(payload, dict):
        return "Unknown League"
    league = payload.get("league")
    if isinstance(league, dict):
        inner = league.get("data") if isinstance(league.get("data"), dict) else league
        name = inner.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    lid = extract_league_id(payload)
    return f"League {lid}" if lid is not None else "Unknown League"


def build_match_context(payload: Any, reading: MinuteReading) -> MatchContext:
    raw = payload if isinstance(payload, dict) else {}
    home, away = extract_teams(raw)
    home_score, away_score = extract_scores(raw)
    return MatchContext(
        match_id=extract_match_id(raw),
        league_id=extract_league_id(raw),
        home_team=home,
        away_team=away,
        minute=int(reading.minute),
        home_score=home_score,
        away_score=away_score,
        status=extract_status(raw),
        raw_time=raw.get("time"),
        kickoff_unix=extract_kickoff_unix(raw),
        odds=_odds_of(raw),
        minute_stale=bool(reading.stale),
        minute_guarded=bool(reading.guard_applied),
    )


def is_live_match(ctx: MatchContext, *, emergency_fallback: bool = False) -> bool:
    status = str(ctx.status or "").upper()
    if status in PAUSED_STATUSES:
        return False
    if int(ctx.minute) > 0:
        return True
    if status in LIVE_STATUSES:
        return True
    return bool(emergency_fallback) and int(ctx.minute) == 0 and not status


def select_relevant(
    contexts: Iterable[MatchContext],
    *,
    league_ids: Sequence[int] = (),
    limit: int | None = None,
    emergency_fallback: bool = False,
) -> list[MatchContext]:
    allowed = {int(x) for x in league_ids}
    out: list[MatchContext] = []
    for ctx in contexts:
        if allowed and (ctx.league_id is None or int(ctx.league_id) not in allowed):
            continue
        if not is_live_match(ctx, emergency_fallback=emergency_fallback):
            continue
        out.append(ctx)
        if limit is not None and len(out) >= int(limit):
            break
    return out
