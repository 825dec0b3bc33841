from __future__ import annotations

from fastapi import APIRouter, Request

from scout_gateway.app.schemas import AgentMetricsResponse, EngineStatusResponse
from scout_gateway.routes.signals import _engine


router = APIRouter()


@router.get("/api/v1/agent/metrics", response_model=AgentMetricsResponse)
async def get_agent_metrics(request: Request) -> AgentMetricsResponse:
    return AgentMetricsResponse(metrics=_engine(request).agent.performance_metrics())


@router.get("/api/v1/engine/status", response_model=EngineStatusResponse)
async def get_engine_status(request: Request) -> EngineStatusResponse:
    engine = getattr(request.app.state, "engine", None)
    task = getattr(request.app.state, "engine_task", None)
    return EngineStatusResponse(
        enabled=task is not None and not task.done(),
        data_error=getattr(request.app.state, "data_error", None),
        status=engine.status() if engine is not None else {},
    )
