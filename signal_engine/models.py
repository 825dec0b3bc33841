from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


UNKNOWN_TEAM = "Unknown"


class SignalState(str, Enum):
    PRE = "PRE"
    CANDIDATE = "CANDIDATE"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


STATE_ORDER: dict[SignalState, int] = {
    SignalState.PRE: 0,
    SignalState.CANDIDATE: 1,
    SignalState.ACTIVE: 2,
    SignalState.EXPIRED: 3,
}


@dataclass(frozen=True)
class MatchContext:
    match_id: str
    league_id: int | None
    home_team: str = UNKNOWN_TEAM
    away_team: str = UNKNOWN_TEAM
    minute: int = 0
    home_score: int = 0
    away_score: int = 0
    status: str = ""
    raw_time: Any = None
    kickoff_unix: float | None = None
    odds: Any = None
    minute_stale: bool = False
    minute_guarded: bool = False

    @property
    def total_goals(self) -> int:
        return int(self.home_score) + int(self.away_score)


@dataclass(frozen=True)
class MarketAnalysis:
    market: str
    selection: str
    confidence: float
    reasoning: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    odds: float | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> "MarketAnalysis | None":
        if isinstance(obj, MarketAnalysis):
            return obj
        if not isinstance(obj, dict):
            return None
        market = obj.get("market")
        if not isinstance(market, str) or not market.strip():
            return None
        conf = obj.get("confidence")
        if isinstance(conf, bool) or not isinstance(conf, (int, float)) or not math.isfinite(conf):
            return None
        data = obj.get("data")
        odds = obj.get("odds")
        return cls(
            market=market.strip(),
            selection=str(obj.get("selection") or ""),
            confidence=float(conf),
            reasoning=str(obj.get("reasoning") or ""),
            data=dict(data) if isinstance(data, dict) else {},
            odds=float(odds) if isinstance(odds, (int, float)) and not isinstance(odds, bool) and math.isfinite(odds) else None,
        )


@dataclass
class SignalCandidate:
    match_id: str
    market: str
    selection: str
    confidence: float
    ttl_seconds: int
    home_team: str = UNKNOWN_TEAM
    away_team: str = UNKNOWN_TEAM
    league: str = "Unknown League"
    minute: int = 0
    liquidity_ok: bool = True
    state: SignalState = SignalState.PRE
    reasoning: str = ""
    created_unix: float = field(default_factory=lambda: time.time())
    last_update_unix: float = field(default_factory=lambda: time.time())
    odds: float | None = None
    bookmaker: str | None = None
    is_value_bet: bool = False
    implied_probability: float | None = None
    value_score: float | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.match_id}:{self.market}"

    def age_seconds(self, now: float) -> float:
        return float(now) - float(self.created_unix)

    def ttl_left(self, now: float) -> float:
        return max(0.0, float(self.ttl_seconds) - self.age_seconds(now))


@dataclass(frozen=True)
class ActiveSignalSummary:
    id: str
    match_id: str
    market: str
    selection: str
    home_team: str
    away_team: str
    league: str
    confidence: float
    minute: int
    ttl_left: int
    state: str
    reasoning: str
    odds: float | None = None
    bookmaker: str | None = None
    is_value_bet: bool = False
    created_unix: float = 0.0
    evaluation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "market": self.market,
            "selection": self.selection,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "league": self.league,
            "confidence": self.confidence,
            "minute": self.minute,
            "ttl_left": self.ttl_left,
            "state": self.state,
            "reasoning": self.reasoning,
            "odds": self.odds,
            "bookmaker": self.bookmaker,
            "is_value_bet": self.is_value_bet,
            "created_unix": self.created_unix,
            "evaluation_id": self.evaluation_id,
        }


@dataclass(frozen=True)
class ActiveSignalSnapshot:
    active: list[ActiveSignalSummary]
    counts: dict[str, int]
    generated_at_unix: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": [s.to_dict() for s in self.active],
            "counts": dict(self.counts),
            "generated_at_unix": self.generated_at_unix,
        }
