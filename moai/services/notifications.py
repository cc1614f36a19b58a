"""Order status notifications.

``build_order_notification`` maps an order status to what the customer sees.
``NotificationDispatcher`` delivers it: through the user's open notification
socket when there is one, otherwise (or when the socket send fails) into
the user's inbox list in the store.
"""

import asyncio
from contextlib import suppress
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from moai.errors import NotificationError
from moai.models.common import utc_now
from moai.models.cook import Cook
from moai.models.driver import Driver
from moai.models.notification import (
    NotificationAction,
    NotificationPayload,
    NotificationPermission,
    NotificationPreferences,
    OrderNotificationData,
)
from moai.models.order import Order, OrderStatus
from moai.services.tracking import DeliveryTrackingService
from moai.state.documents import (
    COOKS,
    DRIVERS,
    NOTIFICATION_PREFERENCES,
    ORDERS,
    DocumentChange,
    DocumentStore,
)
from moai.state.manager import StateManager
from moai.state.streams import ChangeKind, ChangeStream
from moai.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_NOTIFIED_STATUSES = frozenset({
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERING,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


def build_order_notification(data: OrderNotificationData) -> NotificationPayload:
    """Title, body and presentation for an order status change."""
    short_id = data.order_id[-8:]
    title = "Moai - Actualización de Pedido"
    body = "Tu pedido ha sido actualizado"
    icon = "/icon-192x192.png"
    require_interaction = False
    vibrate = [200, 100, 200]
    actions: list[NotificationAction] = []

    status = data.order_status
    if status == OrderStatus.ACCEPTED.value:
        title = "✅ Pedido Confirmado"
        by_cook = f" por {data.cooker_name}" if data.cooker_name else ""
        body = f"Tu pedido #{short_id} ha sido confirmado{by_cook}"
        icon = "/notifications/accepted.png"
        actions = [NotificationAction(action="view", title="Ver Pedido")]
    elif status == OrderStatus.PREPARING.value:
        title = "👨‍🍳 Preparando tu Pedido"
        body = f"{data.cooker_name or 'El cocinero'} está preparando tu pedido. ¡Ya casi está listo!"
        icon = "/notifications/preparing.png"
        actions = [NotificationAction(action="track", title="Ver Progreso")]
    elif status == OrderStatus.READY.value:
        title = "🍽️ ¡Pedido Listo!"
        body = "Tu comida está lista. Buscando conductor para la entrega."
        icon = "/notifications/ready.png"
        vibrate = [300, 100, 300, 100, 300]
        require_interaction = True
    elif status == OrderStatus.DELIVERING.value:
        title = "🚗 Conductor Asignado"
        eta = f". ETA: {data.eta}" if data.eta else ""
        body = f"{data.driver_name or 'Un conductor'} está en camino con tu pedido{eta}"
        icon = "/notifications/delivering.png"
        actions = [NotificationAction(action="track", title="Seguir en Tiempo Real")]
        require_interaction = True
    elif status == OrderStatus.DELIVERED.value:
        title = "🎉 ¡Pedido Entregado!"
        body = "¡Disfruta tu comida! No olvides calificar tu experiencia."
        icon = "/notifications/delivered.png"
        actions = [NotificationAction(action="rate", title="Calificar")]
        vibrate = [300, 100, 300, 100, 300, 100, 300]
        require_interaction = True
    elif status == OrderStatus.CANCELLED.value:
        title = "❌ Pedido Cancelado"
        body = "Tu pedido ha sido cancelado. Te reembolsaremos el dinero."
        icon = "/notifications/cancelled.png"
        actions = [NotificationAction(action="support", title="Contactar Soporte")]
    else:
        body = data.message or body

    return NotificationPayload(
        title=title,
        body=body,
        icon=icon,
        vibrate=vibrate,
        require_interaction=require_interaction,
        actions=actions,
        tag=f"order-{data.order_id}",
        renotify=True,
        data={
            "order_id": data.order_id,
            "order_status": status,
            "url": data.url or f"/orders/{data.order_id}/tracking",
        },
    )


class ConnectionManager:
    """Open notification sockets. A user may have several, one per tab."""

    def __init__(self) -> None:
        self.active_connections: dict[str, set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.register(user_id, websocket)

    def register(self, user_id: str, websocket: WebSocket) -> None:
        self.active_connections.setdefault(user_id, set()).add(websocket)
        logger.info(
            "websocket_connected",
            user_id=user_id,
            connections=len(self.active_connections[user_id]),
        )

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """Remove one WebSocket connection, leaving the user's other sockets open."""
        sockets = self.active_connections.get(user_id)
        if not sockets or websocket not in sockets:
            return

        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[user_id]
        logger.info("websocket_disconnected", user_id=user_id, connections=len(sockets))

    def is_connected(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    async def send_message(self, user_id: str, message: dict[str, Any]) -> int:
        """Send a message to every open socket of a user.

        Sockets that fail are dropped. Raises NotificationError when no
        socket took the message.
        """
        sockets = list(self.active_connections.get(user_id, ()))
        if not sockets:
            raise NotificationError(f"No open notification channel for {user_id}")

        delivered = 0
        errors: list[str] = []
        for websocket in sockets:
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self.disconnect(user_id, websocket)
                errors.append(repr(e))

        if not delivered:
            raise NotificationError(f"Notification channel for {user_id} failed: {'; '.join(errors)}")

        return delivered

    async def close_all(self) -> None:
        for user_id, sockets in list(self.active_connections.items()):
            for websocket in list(sockets):
                with suppress(RuntimeError, WebSocketDisconnect):
                    await websocket.close()
                self.disconnect(user_id, websocket)


class WebSocketPushTransport:
    """Pushes notifications over the user's open notification socket."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    def available(self, user_id: str) -> bool:
        return self.connections.is_connected(user_id)

    async def deliver(self, user_id: str, payload: NotificationPayload) -> None:
        await self.connections.send_message(
            user_id,
            {"type": "notification", "notification": payload.model_dump(mode="json")},
        )


class LocalInboxTransport:
    """Appends notifications to the user's inbox list in the store."""

    def __init__(self, state: StateManager):
        self.state = state

    def _key(self, user_id: str) -> str:
        return f"notifications:{user_id}"

    async def deliver(self, user_id: str, payload: NotificationPayload) -> None:
        await self.state.rpush(self._key(user_id), payload.model_dump(mode="json"))

    async def inbox(self, user_id: str) -> list[NotificationPayload]:
        return [
            NotificationPayload.model_validate(item)
            for item in await self.state.lrange(self._key(user_id))
        ]


class NotificationDispatcher:
    """Delivers notifications to users who granted permission."""

    def __init__(
        self,
        store: DocumentStore,
        local: LocalInboxTransport,
        push: WebSocketPushTransport | None = None,
    ):
        self.store = store
        self.local = local
        self.push = push

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        preferences = await self.store.get(
            NotificationPreferences, NOTIFICATION_PREFERENCES, user_id
        )
        return preferences or NotificationPreferences(user_id=user_id)

    async def set_permission(
        self, user_id: str, permission: NotificationPermission
    ) -> NotificationPreferences:
        """Record the user's permission. Granting it also turns notifications on."""
        changes: dict[str, Any] = {
            "user_id": user_id,
            "permission": permission.value,
            "updated_at": utc_now().isoformat(),
        }
        if permission == NotificationPermission.GRANTED:
            changes["enabled"] = True

        return await self.store.merge(
            NotificationPreferences, NOTIFICATION_PREFERENCES, user_id, changes, create=True
        )

    async def set_enabled(self, user_id: str, enabled: bool) -> NotificationPreferences:
        return await self.store.merge(
            NotificationPreferences,
            NOTIFICATION_PREFERENCES,
            user_id,
            {"user_id": user_id, "enabled": enabled, "updated_at": utc_now().isoformat()},
            create=True,
        )

    async def dispatch(self, user_id: str, payload: NotificationPayload) -> bool:
        """Deliver ``payload``. Returns False when the user has not granted permission."""
        preferences = await self.get_preferences(user_id)
        if preferences.permission != NotificationPermission.GRANTED:
            logger.warning("notification_permission_not_granted", user_id=user_id)
            return False

        if self.push is not None and self.push.available(user_id):
            try:
                await self.push.deliver(user_id, payload)
                logger.info("notification_pushed", user_id=user_id, tag=payload.tag)
                return True
            except NotificationError as e:
                logger.error("notification_push_failed", user_id=user_id, error=str(e))

        await self.local.deliver(user_id, payload)
        logger.info("notification_stored", user_id=user_id, tag=payload.tag)
        return True

    async def notify_order(self, user_id: str, data: OrderNotificationData) -> bool:
        return await self.dispatch(user_id, build_order_notification(data))


class OrderStatusNotifier:
    """Turns order status changes into customer notifications.

    The first snapshot of each order only records its status; notifications
    start with the first change after that.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        tracking: DeliveryTrackingService,
        enabled_statuses: frozenset[OrderStatus] = DEFAULT_NOTIFIED_STATUSES,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.tracking = tracking
        self.enabled_statuses = enabled_statuses
        self._previous: dict[str, OrderStatus] = {}
        self._stream: ChangeStream[DocumentChange[Order]] | None = None
        self._task: asyncio.Task | None = None

    async def start(self, **filters: Any) -> None:
        """Watch orders matching ``filters`` (e.g. ``customer_id``)."""
        await self.stop()
        self._stream = await self.store.watch_collection(Order, ORDERS, **filters)
        self._task = asyncio.create_task(self._consume(self._stream))

    async def stop(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _consume(self, stream: ChangeStream[DocumentChange[Order]]) -> None:
        async for change in stream:
            try:
                await self.handle_change(change)
            except Exception as e:
                # One bad change must not end the watch
                logger.error(
                    "order_notification_failed",
                    order_id=change.document_id,
                    error=str(e),
                    exc_info=True,
                )

    async def handle_change(self, change: DocumentChange[Order]) -> bool:
        """Dispatch a notification for ``change`` if it is a status change worth sending."""
        if change.document is None:
            self._previous.pop(change.document_id, None)
            return False

        order = change.document
        previous = self._previous.get(order.id)
        self._previous[order.id] = order.status

        if change.kind == ChangeKind.SNAPSHOT or previous is None:
            return False
        if previous == order.status or order.status not in self.enabled_statuses:
            return False

        preferences = await self.dispatcher.get_preferences(order.customer_id)
        if not preferences.enabled:
            return False

        data = await self._enrich(order)
        logger.info(
            "order_status_changed",
            order_id=order.id,
            from_status=previous.value,
            to_status=order.status.value,
        )
        return await self.dispatcher.notify_order(order.customer_id, data)

    async def _enrich(self, order: Order) -> OrderNotificationData:
        cooker_name = None
        driver_name = None
        eta = None

        if order.cooker_id:
            cook = await self.store.get(Cook, COOKS, order.cooker_id)
            cooker_name = cook.display_name if cook else None

        if order.status == OrderStatus.DELIVERING and order.driver_id:
            driver = await self.store.get(Driver, DRIVERS, order.driver_id)
            driver_name = driver.display_name if driver else None
            tracking = await self.tracking.get(order.id)
            eta = tracking.estimated_delivery_time if tracking else None

        return OrderNotificationData(
            order_id=order.id,
            order_status=order.status.value,
            cooker_name=cooker_name,
            driver_name=driver_name,
            eta=eta or None,
            url=f"/orders/{order.id}/tracking",
        )


def control_reply(message: dict[str, Any], version: str) -> dict[str, Any] | None:
    """Reply to a control message on the notification socket, if one is due."""
    message_type = message.get("type")

    if message_type == "SKIP_WAITING":
        return {"type": "SKIP_WAITING", "status": "ok"}

    if message_type == "GET_VERSION":
        return {"type": "VERSION", "version": version}

    if message_type == "SHOW_NOTIFICATION":
        options = message.get("options") or {}
        payload = NotificationPayload(title=message.get("title", ""), **_payload_options(options))
        return {"type": "notification", "notification": payload.model_dump(mode="json")}

    if message_type == "ping":
        return {"type": "pong"}

    return None


def _payload_options(options: dict[str, Any]) -> dict[str, Any]:
    allowed = set(NotificationPayload.model_fields) - {"title", "created_at"}
    return {key: value for key, value in options.items() if key in allowed}

