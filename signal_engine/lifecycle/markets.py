from __future__ import annotations

from dataclasses import dataclass, field


BUCKET_OU = "ou"
BUCKET_BTTS = "btts"
BUCKET_NEXT_GOAL = "next_goal"
BUCKET_OTHER = "other"

PROMOTION_MARGIN = 15.0
DEFAULT_OTHER_LIMIT = 2


def market_bucket(market: str) -> str:
    m = str(market or "").strip().lower()
    if m.startswith("over_") or m.startswith("under_"):
        return BUCKET_OU
    if m.startswith("btts"):
        return BUCKET_BTTS
    if m.startswith("next_goal"):
        return BUCKET_NEXT_GOAL
    return BUCKET_OTHER


def market_family(market: str) -> str:
    bucket = market_bucket(market)
    if bucket != BUCKET_OTHER:
        return bucket
    m = str(market or "").strip().lower()
    for family in ("corners", "cards", "asian_handicap", "double_chance"):
        if m.startswith(family):
            return family
    return BUCKET_OTHER


@dataclass(frozen=True)
class MarketConfig:
    enabled: bool = True
    min_confidence: float = 65.0
    max_signals_per_match: int = 2


def default_markets() -> dict[str, MarketConfig]:
    return {
        BUCKET_OU: MarketConfig(enabled=True, min_confidence=65.0, max_signals_per_match=2),
        BUCKET_BTTS: MarketConfig(enabled=True, min_confidence=60.0, max_signals_per_match=2),
        BUCKET_NEXT_GOAL: MarketConfig(enabled=True, min_confidence=70.0, max_signals_per_match=1),
    }


@dataclass(frozen=True)
class LifecycleConfig:
    confidence_active: float = 65.0
    max_active: int = 10
    cooldown_seconds: float = 300.0
    maturation_seconds: float = 60.0
    signal_ttl_minutes: float = 15.0
    markets: dict[str, MarketConfig] = field(default_factory=default_markets)

    @property
    def signal_ttl_seconds(self) -> int:
        return int(round(float(self.signal_ttl_minutes) * 60.0))

    def market_config(self, market: str) -> MarketConfig:
        bucket = market_bucket(market)
        cfg = self.markets.get(bucket)
        if cfg is not None:
            return cfg
        return MarketConfig(enabled=True, min_confidence=float(self.confidence_active), max_signals_per_match=DEFAULT_OTHER_LIMIT)

    def threshold(self, market: str) -> float:
        return float(self.market_config(market).min_confidence)

    def per_match_limit(self, market: str) -> int:
        return int(self.market_config(market).max_signals_per_match)

    def enabled(self, market: str) -> bool:
        return bool(self.market_config(market).enabled)
