from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from signal_engine.models import UNKNOWN_TEAM


MINUTE_CAP = 130
RECENT_EVENTS_WINDOW = 5

LIVE_STATUSES = frozenset(
    {
        "LIVE",
        "INPLAY",
        "1ST_HALF",
        "2ND_HALF",
        "1H",
        "2H",
        "ET",
        "AET",
        "EXTRA_TIME",
        "PEN",
        "PENALTIES",
        "INPLAY_1ST_HALF",
        "INPLAY_2ND_HALF",
        "INPLAY_ET",
        "INPLAY_PENALTIES",
    }
)
KICKOFF_ESTIMATE_STATUSES = frozenset({"LIVE", "INPLAY", "1ST_HALF", "2ND_HALF", "ET", "AET", "PEN", "INPLAY_1ST_HALF", "INPLAY_2ND_HALF", "INPLAY_ET"})
MISSING_STATUSES = frozenset({"", "UNDEFINED", "NONE", "NULL"})


def _dict(v: Any) -> dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _unwrap_list(v: Any) -> list[Any] | None:
    if isinstance(v, dict):
        v = v.get("data")
    return v if isinstance(v, list) else None


def _positive_int(v: Any) -> int | None:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    x = float(v)
    if not math.isfinite(x) or x <= 0:
        return None
    return int(x)


def _non_negative_int(v: Any) -> int | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, str):
        try:
            v = float(v.strip())
        except Exception:
            return None
    if not isinstance(v, (int, float)):
        return None
    x = float(v)
    if not math.isfinite(x) or x < 0:
        return None
    return int(x)


def minute_from_time_fields(raw: dict[str, Any]) -> int | None:
    t = _dict(raw.get("time"))
    return _positive_int(t.get("minute")) or _positive_int(t.get("minutes"))


def minute_from_current_fields(raw: dict[str, Any]) -> int | None:
    t = _dict(raw.get("time"))
    return _positive_int(_dict(t.get("current")).get("minute")) or _positive_int(_dict(raw.get("live")).get("minute"))


def minute_from_periods(raw: dict[str, Any]) -> int | None:
    periods = raw.get("periods")
    items = _unwrap_list(periods)
    if items:
        m = _positive_int(_dict(items[0]).get("minute"))
        if m is not None:
            return m
    return _positive_int(_dict(_dict(periods).get("first")).get("minute"))


def minute_from_events(raw: dict[str, Any]) -> int | None:
    items = _unwrap_list(raw.get("events"))
    if not items:
        return None
    best: int | None = None
    for ev in items[:RECENT_EVENTS_WINDOW]:
        m = _positive_int(_dict(ev).get("minute"))
        if m is not None and (best is None or m > best):
            best = m
    return best


def extract_status(raw: dict[str, Any]) -> str:
    st = raw.get("status")
    if isinstance(st, dict):
        for k in ("name", "short", "developer_name", "state"):
            v = st.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip().upper()
    elif isinstance(st, str) and st.strip():
        return st.strip().upper()
    state = _dict(raw.get("state"))
    for k in ("developer_name", "short_name", "name"):
        v = state.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip().upper()
    v = _dict(raw.get("time")).get("status")
    if isinstance(v, str) and v.strip():
        return v.strip().upper()
    return ""


def _parse_ts(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        x = float(v)
        if not math.isfinite(x) or x <= 0:
            return None
        return x / 1000.0 if x > 1e12 else x
    if isinstance(v, str) and v.strip():
        s = v.strip()
        if s.isdigit():
            return _parse_ts(int(s))
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00").replace(" ", "T", 1))
        except Exception:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    return None


def extract_kickoff_unix(raw: dict[str, Any]) -> float | None:
    t = _dict(raw.get("time"))
    starting = t.get("starting_at")
    for v in (
        _dict(starting).get("timestamp"),
        raw.get("starting_at_timestamp"),
        starting if not isinstance(starting, dict) else _dict(starting).get("date_time"),
        raw.get("starting_at"),
    ):
        ts = _parse_ts(v)
        if ts is not None:
            return ts
    return None


def minute_from_kickoff(raw: dict[str, Any], now_unix: float) -> int | None:
    status = extract_status(raw)
    if status not in KICKOFF_ESTIMATE_STATUSES and status not in MISSING_STATUSES:
        return None
    kickoff = extract_kickoff_unix(raw)
    if kickoff is None:
        return None
    elapsed = max(0, int(math.floor((float(now_unix) - kickoff) / 60.0)))
    minute = min(MINUTE_CAP, elapsed)
    return minute if minute > 0 else None


def minute_sources(*, use_periods_events: bool = True) -> list[tuple[str, Callable[[dict[str, Any]], int | None]]]:
    sources: list[tuple[str, Callable[[dict[str, Any]], int | None]]] = [
        ("time", minute_from_time_fields),
        ("current", minute_from_current_fields),
    ]
    if use_periods_events:
        sources.append(("periods", minute_from_periods))
        sources.append(("events", minute_from_events))
    return sources


def extract_raw_minute(
    raw: Any,
    *,
    now_unix: float,
    use_periods_events: bool = True,
    use_starting_at: bool = True,
) -> tuple[int, str]:
    if not isinstance(raw, dict):
        return 0, "none"
    for name, fn in minute_sources(use_periods_events=use_periods_events):
        m = fn(raw)
        if m is not None:
            return min(MINUTE_CAP, m), name
    if use_starting_at:
        m = minute_from_kickoff(raw, now_unix)
        if m is not None:
            return m, "kickoff"
    return 0, "none"


def extract_match_id(raw: Any) -> str:
    if not isinstance(raw, dict):
        return "unknown"
    for k in ("id", "fixture_id", "uuid"):
        v = raw.get(k)
        if isinstance(v, bool) or v is None:
            continue
        s = str(v).strip()
        if s:
            return s
    return "unknown"


def extract_league_id(raw: dict[str, Any]) -> int | None:
    league = raw.get("league")
    for v in (_dict(league).get("id"), _dict(_dict(league).get("data")).get("id"), raw.get("league_id")):
        n = _non_negative_int(v)
        if n is not None:
            return n
    return None


def _side_of(p: dict[str, Any]) -> str | None:
    v = _dict(p.get("meta")).get("location") or p.get("location") or p.get("side")
    return str(v).strip().lower() if isinstance(v, str) else None


def _team_label(p: Any) -> str | None:
    p = _dict(p)
    for k in ("name", "short_code"):
        v = p.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def teams_from_participants(raw: dict[str, Any]) -> tuple[str | None, str | None] | None:
    parts = _unwrap_list(raw.get("participants"))
    if not parts or len(parts) < 2:
        return None
    home_p = next((p for p in parts if isinstance(p, dict) and _side_of(p) == "home"), parts[0])
    away_p = next((p for p in parts if isinstance(p, dict) and _side_of(p) == "away"), parts[1])
    return _team_label(home_p), _team_label(away_p)


def teams_from_legacy(raw: dict[str, Any]) -> tuple[str | None, str | None] | None:
    lt = raw.get("localteam")
    vt = raw.get("visitorteam")
    if lt is None and vt is None:
        return None
    home = _team_label(_dict(lt).get("data") if isinstance(_dict(lt).get("data"), dict) else lt)
    away = _team_label(_dict(vt).get("data") if isinstance(_dict(vt).get("data"), dict) else vt)
    return home, away


def teams_from_team_list(raw: dict[str, Any]) -> tuple[str | None, str | None] | None:
    teams = _unwrap_list(raw.get("teams"))
    if not teams or len(teams) < 2:
        return None
    return _team_label(teams[0]), _team_label(teams[1])


TEAM_SOURCES: tuple[Callable[[dict[str, Any]], tuple[str | None, str | None] | None], ...] = (
    teams_from_participants,
    teams_from_legacy,
    teams_from_team_list,
)


def extract_teams(raw: Any) -> tuple[str, str]:
    if not isinstance(raw, dict):
        return UNKNOWN_TEAM, UNKNOWN_TEAM
    home: str | None = None
    away: str | None = None
    for fn in TEAM_SOURCES:
        found = fn(raw)
        if found is None:
            continue
        home = home or found[0]
        away = away or found[1]
        if home and away:
            return home, away
    match_id = extract_match_id(raw)
    if match_id == "unknown":
        return home or UNKNOWN_TEAM, away or UNKNOWN_TEAM
    return home or f"Team_{match_id}_home", away or f"Team_{match_id}_away"


def _scores_from_list(items: list[Any]) -> tuple[int, int] | None:
    home: int | None = None
    away: int | None = None
    for it in items:
        it = _dict(it)
        desc = str(it.get("description") or it.get("score_type") or "").strip().upper()
        if desc and desc != "CURRENT":
            continue
        if "localteam_score" in it or "visitorteam_score" in it:
            return _non_negative_int(it.get("localteam_score")) or 0, _non_negative_int(it.get("visitorteam_score")) or 0
        score = _dict(it.get("score"))
        goals = _non_negative_int(score.get("goals"))
        side = str(score.get("participant") or "").strip().lower()
        if goals is None:
            continue
        if side == "home":
            home = goals
        elif side == "away":
            away = goals
    if home is None and away is None:
        return None
    return home or 0, away or 0


def extract_scores(raw: Any) -> tuple[int, int]:
    if not isinstance(raw, dict):
        return 0, 0
    scores = raw.get("scores")
    items = _unwrap_list(scores)
    if items is not None:
        out = _scores_from_list(items)
        if out is not None:
            return out
    s = _dict(scores)
    for hk, ak in (("localteam_score", "visitorteam_score"), ("home", "away")):
        h = _non_negative_int(s.get(hk))
        a = _non_negative_int(s.get(ak))
        if h is not None or a is not None:
            return h or 0, a or 0
    goals = _dict(raw.get("goals"))
    h = _non_negative_int(goals.get("home"))
    a = _non_negative_int(goals.get("away"))
    return h or 0, a or 0
