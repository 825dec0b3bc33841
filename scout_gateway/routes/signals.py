from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from scout_gateway.app.engine import ScoutEngine
from scout_gateway.app.schemas import (
    ActiveSignalOut,
    ActiveSignalsResponse,
    OutcomeRequest,
    OutcomeResponse,
    SignalStatsResponse,
)


router = APIRouter()


def _engine(request: Request) -> ScoutEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="engine_unavailable")
    return engine


@router.get("/api/v1/signals/active", response_model=ActiveSignalsResponse)
async def get_active_signals(request: Request) -> ActiveSignalsResponse:
    snap = _engine(request).snapshot()
    return ActiveSignalsResponse(
        active=[ActiveSignalOut(**s.to_dict()) for s in snap.active],
        counts=dict(snap.counts),
        generated_at_unix=snap.generated_at_unix,
    )


@router.get("/api/v1/signals/stats", response_model=SignalStatsResponse)
async def get_signal_stats(request: Request, limit: int = Query(default=20, ge=1, le=200)) -> SignalStatsResponse:
    engine = _engine(request)
    store = getattr(request.app.state, "signal_store", None)
    outcomes: dict[str, int] = {}
    recent: list[dict] = []
    if store is not None:
        outcomes = await store.outcome_counts()
        recent = await store.recent(limit)
    return SignalStatsResponse(lifecycle=engine.lifecycle.stats(), outcomes=outcomes, recent=recent)


@router.post("/api/v1/signals/outcome", response_model=OutcomeResponse)
async def post_signal_outcome(body: OutcomeRequest, request: Request) -> OutcomeResponse:
    ref = body.evaluation_id or body.signal_id
    if not ref:
        raise HTTPException(status_code=422, detail="signal_id_or_evaluation_id_required")
    reward = await _engine(request).report_outcome(ref, body.outcome, body.profit)
    if reward is None:
        raise HTTPException(status_code=404, detail="evaluation_not_found")
    return OutcomeResponse(accepted=True, reward=reward)
