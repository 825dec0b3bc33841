from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from signal_engine.features.schema import (
    DEFAULT_SELECTION_TYPE,
    MARKET_LIQUIDITY_VALUES,
    MARKET_TYPE_VALUES,
    NEUTRAL,
    SELECTION_TYPE_VALUES,
    STATE_FEATURE_COLS,
)
from signal_engine.lifecycle.markets import market_family
from signal_engine.models import MarketAnalysis, MatchContext


def _num(v: Any, default: float = 0.0) -> float:
    if isinstance(v, bool):
        return float(default)
    if isinstance(v, (int, float)):
        x = float(v)
        return x if math.isfinite(x) else float(default)
    return float(default)


def _clip01(x: float) -> float:
    if not math.isfinite(x):
        return 0.0
    return min(1.0, max(0.0, float(x)))


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def market_type_value(market: str) -> float:
    return float(MARKET_TYPE_VALUES.get(market_family(market), 0.0))


def market_liquidity_value(market: str) -> float:
    return float(MARKET_LIQUIDITY_VALUES.get(market_family(market), NEUTRAL))


def selection_type_value(selection: str) -> float:
    s = str(selection or "").strip().upper()
    head = s.split(" ", 1)[0] if s else ""
    return float(SELECTION_TYPE_VALUES.get(head, DEFAULT_SELECTION_TYPE))


def game_intensity(data: dict[str, Any]) -> float:
    shots = _num(data.get("total_shots"))
    corners = _num(data.get("total_corners"))
    fouls = _num(data.get("total_fouls"))
    cards = _num(data.get("total_cards"))
    return min((shots * 0.3 + corners * 0.4 + fouls * 0.2 + cards * 0.1) / 20.0, 1.0)


def momentum(data: dict[str, Any], minute: int) -> float:
    recent_shots = _num(data.get("recent_shots"))
    recent_corners = _num(data.get("recent_corners"))
    time_factor = 1.2 if int(minute) > 60 else 1.0
    return min((recent_shots * 0.6 + recent_corners * 0.4) * time_factor / 10.0, 1.0)


def value_odds_ratio(confidence: float, odds: float | None) -> float:
    c = float(confidence) if confidence else 50.0
    o = float(odds) if isinstance(odds, (int, float)) and odds and odds > 0 else 2.0
    implied = 1.0 / o
    return min((c / 100.0) / implied, 2.0) / 2.0


def time_of_match(minute: int) -> float:
    m = int(minute)
    if m < 15:
        return 0.3
    if m < 30:
        return 0.5
    if m < 60:
        return 0.8
    if m < 75:
        return 1.0
    return 0.9


def score_composite(home: int, away: int) -> float:
    total = int(home) + int(away)
    diff = abs(int(home) - int(away))
    return (total * 0.6 + diff * 0.4) / 10.0


def recent_performance(history: Sequence[float]) -> float:
    if len(history) < 10:
        return NEUTRAL
    recent = list(history)[-10:]
    return _clip01(sum(recent) / len(recent))


def confidence_stability(confidence: float) -> float:
    c = float(confidence)
    if c > 85 or c < 15:
        return 0.3
    if c > 75 or c < 25:
        return 0.6
    return 1.0


def team_form_score(form: Any) -> float:
    if not isinstance(form, (list, tuple)) or not form:
        return NEUTRAL
    total = 0.0
    weight_sum = 0.0
    n = len(form)
    for i, match in enumerate(form):
        weight = float(n - i)
        score = 0.0
        result = str(_get(match, "result") or "").upper()
        if result == "W":
            score += 0.6
        elif result == "D":
            score += 0.3
        rating = _num(_get(match, "performance_rating"))
        if rating:
            score += (rating / 100.0) * 0.4
        else:
            gf = _num(_get(match, "goals_for"))
            ga = _num(_get(match, "goals_against"))
            score += (gf / (gf + ga + 1.0)) * 0.4
        total += score * weight
        weight_sum += weight
    return total / weight_sum if weight_sum > 0 else NEUTRAL


def trend_features(trends: Any) -> list[float]:
    if not trends:
        return [NEUTRAL] * 8

    btts = min(_num(_get(trends, "btts_percentage"), 50.0) / 100.0, 1.0)
    over = min(_num(_get(trends, "over_25_percentage"), 50.0) / 100.0, 1.0)

    home_form = _get(trends, "home_form")
    away_form = _get(trends, "away_form")
    if home_form and away_form:
        h = team_form_score(home_form)
        a = team_form_score(away_form)
        form = (h + a) / 2.0
        quality = min(h + a, 1.0)
    else:
        form = NEUTRAL
        quality = NEUTRAL

    h2h = _get(trends, "head_to_head")
    if isinstance(h2h, (list, tuple)) and h2h:
        avg_goals = sum(_num(_get(m, "total_goals")) for m in h2h) / len(h2h)
        btts_rate = sum(1 for m in h2h if _get(m, "btts")) / len(h2h)
        head_to_head = min((avg_goals / 5.0 + btts_rate) / 2.0, 1.0)
    else:
        head_to_head = NEUTRAL

    corner_stats = _get(trends, "corner_stats")
    if corner_stats:
        avg = _num(_get(corner_stats, "average"), 10.0) or 10.0
        adv = _num(_get(corner_stats, "home_advantage"), 1.0) or 1.0
        corners = min((avg / 15.0) * adv / 2.0, 1.0)
    else:
        corners = NEUTRAL

    card_stats = _get(trends, "card_stats")
    if card_stats:
        avg = _num(_get(card_stats, "average"), 4.0) or 4.0
        tendency = _num(_get(card_stats, "referee_tendency"), 1.0) or 1.0
        cards = min((avg / 8.0) * tendency / 2.0, 1.0)
    else:
        cards = NEUTRAL

    league_ctx = _get(trends, "league_context")
    if league_ctx:
        total_leagues = _num(_get(league_ctx, "total_leagues"))
        source = str(_get(league_ctx, "data_source") or "")
        reliability = min(total_leagues / 1000.0, 1.0) * 0.7 + (0.3 if source == "footystats" else 0.1)
    else:
        reliability = NEUTRAL

    return [btts, over, form, head_to_head, corners, cards, quality, reliability]


def build_state(
    analysis: MarketAnalysis,
    match: MatchContext,
    *,
    trends: Any = None,
    performance_history: Sequence[float] = (),
) -> tuple[float, ...]:
    data = analysis.data if isinstance(analysis.data, dict) else {}
    conf = _num(analysis.confidence)
    minute = int(match.minute or 0)

    basic = [
        _clip01(conf / 100.0),
        _clip01(minute / 90.0),
        _clip01(match.total_goals / 5.0),
        _clip01(_num(data.get("total_shots_on_target")) / 10.0),
        _clip01(_num(data.get("total_corners")) / 15.0),
        _clip01(_num(data.get("total_fouls")) / 30.0),
        market_type_value(analysis.market),
        selection_type_value(analysis.selection),
    ]
    engineered = [
        game_intensity(data),
        momentum(data, minute),
        value_odds_ratio(conf, analysis.odds),
        time_of_match(minute),
        score_composite(match.home_score, match.away_score),
        recent_performance(performance_history),
        market_liquidity_value(analysis.market),
        confidence_stability(conf),
    ]
    out = tuple(float(x) for x in basic + engineered + trend_features(trends))
    if len(out) != len(STATE_FEATURE_COLS):
        raise ValueError(f"state_length_mismatch:{len(out)}")
    return out


def state_key(state: Sequence[float]) -> str:
    return ",".join(f"{round(float(x), 2):g}" for x in state)
