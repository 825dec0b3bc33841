from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


Outcome = Literal["won", "lost", "expired"]


class ActiveSignalOut(BaseModel):
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


class ActiveSignalsResponse(BaseModel):
    active: list[ActiveSignalOut]
    counts: dict[str, int]
    generated_at_unix: float


class SignalStatsResponse(BaseModel):
    lifecycle: dict[str, Any]
    outcomes: dict[str, int] = Field(default_factory=dict)
    recent: list[dict[str, Any]] = Field(default_factory=list)


class OutcomeRequest(BaseModel):
    signal_id: str | None = Field(default=None, min_length=1, max_length=200)
    evaluation_id: str | None = Field(default=None, min_length=1, max_length=200)
    outcome: Outcome
    profit: float | None = None


class OutcomeResponse(BaseModel):
    accepted: bool
    reward: float | None = None


class AgentMetricsResponse(BaseModel):
    metrics: dict[str, Any]


class EngineStatusResponse(BaseModel):
    enabled: bool
    data_error: str | None = None
    status: dict[str, Any] = Field(default_factory=dict)
