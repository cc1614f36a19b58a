"""WebSocket handlers for notifications and driver positions."""

import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from moai.errors import GeolocationError
from moai.services.container import ServiceContainer
from moai.services.location import PositionSample
from moai.services.notifications import control_reply
from moai.utils.logging import get_logger

logger = get_logger(__name__)


class DriverMessage(BaseModel):
    """Message sent by a driver's app on the location socket."""

    type: str  # "position", "error", "start_delivery", "end_delivery", "ping"
    lat: float | None = None
    lng: float | None = None
    speed: float | None = None
    heading: float | None = None
    order_id: str | None = None
    message: str | None = None
    metadata: dict[str, Any] = {}


async def handle_notification_socket(
    websocket: WebSocket,
    user_id: str,
    services: ServiceContainer,
) -> None:
    """
    Push channel for a user's notifications.

    Args:
        websocket: WebSocket connection
        user_id: User the notifications are for
        services: Service container
    """
    manager = services.connections
    await manager.connect(user_id, websocket)

    try:
        await websocket.send_json(
            {
                "type": "connected",
                "user_id": user_id,
                "version": services.settings.notification_channel_version,
            }
        )

        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise ValueError("Message must be a JSON object")

                reply = control_reply(
                    message, services.settings.notification_channel_version
                )

                if reply is None:
                    await websocket.send_json(
                        {"type": "error", "message": f"Unknown message type: {message.get('type')}"}
                    )
                else:
                    await websocket.send_json(reply)

            except (ValueError, ValidationError) as e:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid message format",
                        "details": str(e),
                    }
                )

    except WebSocketDisconnect:
        manager.disconnect(user_id, websocket)
        logger.info("websocket_client_disconnected", user_id=user_id)


async def handle_driver_location_socket(
    websocket: WebSocket,
    driver_id: str,
    services: ServiceContainer,
) -> None:
    """
    Position feed from a driver's app.

    Idle tracking follows the driver document (online and available);
    ``start_delivery`` switches to the active profile for an order and
    ``end_delivery`` switches back.

    Args:
        websocket: WebSocket connection
        driver_id: Driver sending positions
        services: Service container
    """
    await websocket.accept()
    source = services.position_source(driver_id)
    await services.driver_watcher.watch(driver_id)

    await websocket.send_json({"type": "connected", "driver_id": driver_id})

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = DriverMessage(**json.loads(data))
            except (ValueError, TypeError, ValidationError) as e:
                await websocket.send_json(
                    {"type": "error", "message": "Invalid message format", "details": str(e)}
                )
                continue

            if message.type == "position":
                try:
                    source.push(PositionSample(
                        lat=message.lat,
                        lng=message.lng,
                        speed=message.speed,
                        heading=message.heading,
                    ))
                except ValidationError as e:
                    await websocket.send_json(
                        {"type": "error", "message": "Invalid position", "details": str(e)}
                    )

            elif message.type == "error":
                source.push_error(GeolocationError(message.message or "Unknown geolocation error"))

            elif message.type == "start_delivery" and message.order_id:
                await services.locations.start_active(driver_id, message.order_id, source)
                await websocket.send_json(
                    {"type": "tracking", "profile": "active", "order_id": message.order_id}
                )

            elif message.type == "end_delivery":
                await services.locations.start_idle(driver_id, source)
                await websocket.send_json({"type": "tracking", "profile": "idle"})

            elif message.type == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        logger.info("driver_socket_disconnected", driver_id=driver_id)

    finally:
        await services.driver_watcher.unwatch(driver_id)
        await services.locations.stop(driver_id)
        services.position_sources.pop(driver_id, None)
