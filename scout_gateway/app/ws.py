from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket

from signal_engine.models import ActiveSignalSnapshot
from signal_engine.resilience.timeouts import bounded_timeout


logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 2.0


@dataclass
class LiveUpdateEvent:
    type: str
    payload: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


def snapshot_event(snapshot: ActiveSignalSnapshot) -> LiveUpdateEvent:
    return LiveUpdateEvent(type="active_signals", payload=snapshot.to_dict())


def pong_event() -> LiveUpdateEvent:
    return LiveUpdateEvent(type="pong", payload={"ts": time.time()})


class WebSocketHub:
    def __init__(self, *, send_timeout_seconds: float = SEND_TIMEOUT_SECONDS) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._send_timeout = float(send_timeout_seconds)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.add(ws)
        logger.debug("ws client connected clients=%s", len(self._clients))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)

    async def send(self, ws: WebSocket, event: LiveUpdateEvent) -> None:
        await ws.send_json(event.to_message())

    async def _send_text(self, ws: WebSocket, msg: str) -> bool:
        try:
            await asyncio.wait_for(ws.send_text(msg), timeout=max(0.01, bounded_timeout(self._send_timeout)))
            return True
        except Exception as e:
            logger.debug("ws client dropped err=%s", str(e) or type(e).__name__)
            await self.disconnect(ws)
            return False

    async def broadcast(self, event: LiveUpdateEvent) -> int:
        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return 0
        msg = json.dumps(event.to_message(), ensure_ascii=False)
        results = await asyncio.gather(*(self._send_text(ws, msg) for ws in clients))
        return sum(1 for ok in results if ok)

    async def publish(self, snapshot: ActiveSignalSnapshot) -> int:
        return await self.broadcast(snapshot_event(snapshot))

    async def iter_events(self, ws: WebSocket) -> AsyncIterator[dict[str, Any]]:
        while True:
            data = await ws.receive_json()
            if isinstance(data, dict):
                yield data
