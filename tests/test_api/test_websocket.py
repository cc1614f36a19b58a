"""Tests for the WebSocket handlers."""

import asyncio
import json
from typing import Any

import pytest
from fastapi import WebSocketDisconnect

from moai.api.websocket import handle_driver_location_socket, handle_notification_socket
from moai.services.container import ServiceContainer


class ScriptedWebSocket:
    """Feeds queued messages to a handler, then disconnects."""

    def __init__(self, messages: list[Any]):
        self.incoming = [m if isinstance(m, str) else json.dumps(m) for m in messages]
        self.sent: list[dict[str, Any]] = []
        self.accepted = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def receive_text(self) -> str:
        # Let background tasks run between messages
        await asyncio.sleep(0.01)
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)

    async def close(self) -> None:
        pass


@pytest.mark.asyncio
async def test_notification_socket_control_messages(container: ServiceContainer) -> None:
    """Test the control replies and disconnect cleanup."""
    socket = ScriptedWebSocket([
        {"type": "GET_VERSION"},
        {"type": "ping"},
        {"type": "mystery"},
        "not json",
    ])

    await handle_notification_socket(socket, "customer-1", container)

    assert socket.accepted
    version = container.settings.notification_channel_version
    assert socket.sent[0] == {"type": "connected", "user_id": "customer-1", "version": version}
    assert socket.sent[1] == {"type": "VERSION", "version": version}
    assert socket.sent[2] == {"type": "pong"}
    assert socket.sent[3]["type"] == "error"
    assert socket.sent[4]["message"] == "Invalid message format"
    assert not container.connections.is_connected("customer-1")


@pytest.mark.asyncio
async def test_driver_socket_switches_profiles(container: ServiceContainer) -> None:
    """Test delivery start/end messages and cleanup after disconnect."""
    await container.tracking.create_tracking("order-1", "driver-1", "Juan Pérez")
    socket = ScriptedWebSocket([
        {"type": "start_delivery", "order_id": "order-1"},
        {"type": "position", "lat": -33.44, "lng": -70.65},
        {"type": "position", "lat": 200, "lng": -70.65},
        {"type": "end_delivery"},
        {"type": "ping"},
        "[1, 2]",
    ])

    await handle_driver_location_socket(socket, "driver-1", container)

    replies = [m["type"] for m in socket.sent]
    assert replies == ["connected", "tracking", "error", "tracking", "pong", "error"]
    assert socket.sent[1] == {"type": "tracking", "profile": "active", "order_id": "order-1"}
    assert socket.sent[3] == {"type": "tracking", "profile": "idle"}

    tracking = await container.tracking.get("order-1")
    assert tracking.current_location.lat == -33.44

    assert container.locations.active_trackings() == []
    assert "driver-1" not in container.position_sources
