"""Tests for WebSocket broadcasting."""

import asyncio
import json

import pytest

from site_tasks.websocket.connection_manager import BroadcastNotifier, ConnectionManager


class FakeWebSocket:
    """Minimal stand-in for a FastAPI WebSocket."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)


@pytest.mark.asyncio
async def test_broadcast_drops_dead_connections() -> None:
    """Test a failing client is removed while others still receive."""
    manager = ConnectionManager()
    alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    await manager.connect(alive)  # type: ignore[arg-type]
    await manager.connect(dead)  # type: ignore[arg-type]

    await manager.broadcast({"type": "tasks_changed", "tasks": []})

    assert alive.accepted
    assert json.loads(alive.sent[0]) == {"type": "tasks_changed", "tasks": []}
    assert manager.active_connections == [alive]


@pytest.mark.asyncio
async def test_broadcast_notifier_pushes_alert() -> None:
    """Test alerts reach connected clients."""
    manager = ConnectionManager()
    client = FakeWebSocket()
    await manager.connect(client)  # type: ignore[arg-type]

    BroadcastNotifier(manager).alert("Update Failed", "offline")
    for _ in range(3):
        await asyncio.sleep(0)

    assert json.loads(client.sent[0]) == {
        "type": "alert",
        "title": "Update Failed",
        "message": "offline",
    }


def test_schedule_without_loop_is_dropped() -> None:
    """Test scheduling outside an event loop does nothing."""
    manager = ConnectionManager()
    manager.active_connections.append(FakeWebSocket())  # type: ignore[arg-type]

    manager.schedule({"type": "alert"})
