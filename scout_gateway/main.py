from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from scout_gateway.app.engine import build_engine
from scout_gateway.app.plugins import PluginError, load_analyzer, load_trend_provider
from scout_gateway.app.providers.sportmonks import MatchFeed, ProviderError, SportMonksFeed, StaticFeed
from scout_gateway.app.settings import settings
from scout_gateway.app.state import SignalStore
from scout_gateway.app.ws import WebSocketHub, pong_event, snapshot_event
from scout_gateway.routes import agent, signals


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_origin_regex=settings.cors_allow_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(signals.router)
app.include_router(agent.router)


def _build_feed() -> MatchFeed:
    provider = str(settings.data_provider or "").strip().lower()
    if provider == "sportmonks":
        try:
            return SportMonksFeed(
                api_key=str(settings.sportmonks_api_key or ""),
                base_url=settings.sportmonks_base_url,
                timeout_seconds=settings.sportmonks_timeout_seconds,
                include_periods_events=settings.use_periods_events_fallback,
            )
        except ProviderError as e:
            app.state.data_error = str(e)
            logger.warning("sportmonks feed unavailable err=%s, running without live data", e)
            return StaticFeed()
    if provider not in {"static", "none"}:
        app.state.data_error = f"unknown_data_provider:{provider}"
        logger.warning("unknown data provider=%s, running without live data", provider)
    return StaticFeed()


@app.on_event("startup")
async def startup() -> None:
    app.state.data_error = None
    app.state.ws_hub = WebSocketHub()
    app.state.signal_store = SignalStore(settings.state_db_path)
    analyzer = None
    trend_provider = None
    try:
        analyzer = load_analyzer(settings.analyzer_path)
        trend_provider = load_trend_provider(settings.trend_provider_path)
    except PluginError as e:
        app.state.data_error = str(e)
        logger.error("plugin load failed err=%s", e)
    if analyzer is None:
        logger.warning("no market analyzer configured; signals will not be generated")

    engine = build_engine(
        settings,
        _build_feed(),
        analyzer=analyzer,
        trend_provider=trend_provider,
        store=app.state.signal_store,
        sinks=[app.state.signal_store, app.state.ws_hub],
    )
    app.state.engine = engine
    await engine.load_checkpoint()

    if settings.engine_enabled:
        app.state.engine_task = asyncio.create_task(engine.run_forever())


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "engine_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        with contextlib.suppress(Exception):
            await engine.checkpoint(force=True)


@app.websocket("/ws/live-updates")
async def live_updates(ws: WebSocket) -> None:
    hub: WebSocketHub = app.state.ws_hub
    await hub.connect(ws)
    try:
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await hub.send(ws, snapshot_event(engine.snapshot()))
        async for msg in hub.iter_events(ws):
            if msg.get("type") == "ping":
                await hub.send(ws, pong_event())
            elif msg.get("type") == "snapshot" and engine is not None:
                await hub.send(ws, snapshot_event(engine.snapshot()))
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(ws)
