from __future__ import annotations

import asyncio
import json

from scout_gateway.app.ws import WebSocketHub, snapshot_event
from signal_engine.models import ActiveSignalSnapshot


class FakeSocket:
    def __init__(self, *, broken: bool = False, slow: bool = False) -> None:
        self.broken = broken
        self.slow = slow
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, msg: str) -> None:
        if self.broken:
            raise RuntimeError("closed")
        if self.slow:
            await asyncio.sleep(1.0)
        self.sent.append(msg)


def test_publish_reaches_healthy_clients_and_drops_broken_ones() -> None:
    hub = WebSocketHub(send_timeout_seconds=0.05)
    good, broken, slow = FakeSocket(), FakeSocket(broken=True), FakeSocket(slow=True)
    snap = ActiveSignalSnapshot(active=[], counts={"PRE": 0, "CANDIDATE": 0, "ACTIVE": 0}, generated_at_unix=10.0)

    async def scenario() -> int:
        for ws in (good, broken, slow):
            await hub.connect(ws)
        return await hub.publish(snap)

    assert asyncio.run(scenario()) == 1
    assert good.accepted
    assert hub.client_count == 1
    msg = json.loads(good.sent[0])
    assert msg["type"] == "active_signals"
    assert msg["payload"]["generated_at_unix"] == 10.0


def test_broadcast_without_clients() -> None:
    snap = ActiveSignalSnapshot(active=[], counts={}, generated_at_unix=0.0)
    assert asyncio.run(WebSocketHub().broadcast(snapshot_event(snap))) == 0
