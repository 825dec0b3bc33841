from __future__ import annotations

FEATURE_VERSION = "2026-10-01.1"

BASIC_FEATURES: tuple[str, ...] = (
    "confidence",
    "minute",
    "goals",
    "shots_on_target",
    "corners",
    "fouls",
    "market_type",
    "selection_type",
)

ENGINEERED_FEATURES: tuple[str, ...] = (
    "game_intensity",
    "momentum",
    "value_odds_ratio",
    "time_of_match",
    "score_composite",
    "recent_performance",
    "market_liquidity",
    "confidence_stability",
)

TREND_FEATURES: tuple[str, ...] = (
    "btts_rate",
    "over_25_rate",
    "form",
    "head_to_head",
    "corners_trend",
    "cards_trend",
    "team_quality",
    "data_reliability",
)

STATE_FEATURE_COLS: tuple[str, ...] = BASIC_FEATURES + ENGINEERED_FEATURES + TREND_FEATURES

NEUTRAL = 0.5

MARKET_TYPE_VALUES: dict[str, float] = {
    "ou": 0.2,
    "btts": 0.4,
    "next_goal": 0.6,
    "corners": 0.8,
    "cards": 1.0,
}

MARKET_LIQUIDITY_VALUES: dict[str, float] = {
    "ou": 1.0,
    "btts": 0.9,
    "next_goal": 0.7,
    "corners": 0.6,
    "cards": 0.5,
    "asian_handicap": 0.8,
    "double_chance": 0.7,
}

SELECTION_TYPE_VALUES: dict[str, float] = {
    "OVER": 0.25,
    "UNDER": 0.5,
    "YES": 0.25,
    "NO": 0.5,
    "HOME": 0.33,
    "AWAY": 0.66,
}
DEFAULT_SELECTION_TYPE = 0.75
