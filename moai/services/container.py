"""Process-wide service wiring.

One ``ServiceContainer`` is built in the FastAPI lifespan and stored on
``app.state.services``. Everything that holds state between requests (rate
limit counters, uptime history, tracking sessions, open sockets) hangs off
it, so tests can build their own container or call ``reset()``.
"""

import time
from datetime import datetime
from typing import Callable

import httpx

from moai.config import Settings
from moai.middleware.rate_limit import RateLimitRegistry
from moai.models.common import utc_now
from moai.monitoring.uptime import UptimeMonitor
from moai.services.geocoding import GoogleGeocoder
from moai.services.lifecycle import OrderLifecycleService
from moai.services.location import DriverStatusWatcher, LocationPublisher, QueuePositionSource
from moai.services.mailer import OrderEmailService
from moai.services.notifications import (
    ConnectionManager,
    LocalInboxTransport,
    NotificationDispatcher,
    OrderStatusNotifier,
    WebSocketPushTransport,
)
from moai.services.payments import MercadoPagoClient
from moai.services.routing import RouteSequencer
from moai.services.tracking import DeliveryTrackingService
from moai.state.documents import DocumentStore
from moai.state.manager import StateManager
from moai.state.streams import ChangeBroker
from moai.utils.logging import get_logger

logger = get_logger(__name__)


class ServiceContainer:
    """Owns every long-lived service instance."""

    def __init__(
        self,
        settings: Settings,
        state: StateManager,
        http_client: httpx.AsyncClient,
        clock: Callable[[], datetime] = utc_now,
        rate_limit_clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.state = state
        self.http_client = http_client
        self.started_at = time.monotonic()

        self.broker = ChangeBroker()
        self.store = DocumentStore(state, self.broker)

        self.lifecycle = OrderLifecycleService(self.store, clock=clock)

        geocoder = None
        if settings.google_maps_api_key:
            geocoder = GoogleGeocoder(
                settings.google_maps_api_key, http_client, region=settings.geocoding_region
            )
        self.routes = RouteSequencer(settings.routing, geocoder=geocoder, clock=clock)

        self.tracking = DeliveryTrackingService(self.store, clock=clock)
        self.locations = LocationPublisher(self.store, self.tracking, settings.tracking)
        self.position_sources: dict[str, QueuePositionSource] = {}
        self.driver_watcher = DriverStatusWatcher(
            self.store, self.locations, self.position_source
        )

        self.connections = ConnectionManager()
        self.inbox = LocalInboxTransport(state)
        self.notifications = NotificationDispatcher(
            self.store, self.inbox, push=WebSocketPushTransport(self.connections)
        )
        self.order_notifier = OrderStatusNotifier(
            self.store, self.notifications, self.tracking
        )

        self.payments = MercadoPagoClient(
            settings.mercadopago_access_token,
            http_client,
            base_url=settings.mercadopago_api_url,
            app_base_url=settings.app_base_url,
        )
        self.email = OrderEmailService(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            base_url=settings.app_base_url,
            use_tls=settings.smtp_use_tls,
        )

        self.rate_limits = RateLimitRegistry(settings.rate_limits, clock=rate_limit_clock)
        self.monitor = UptimeMonitor(
            http_client,
            state,
            app_url=settings.app_base_url,
            payment_api_url=settings.mercadopago_api_url,
            history_size=settings.monitor_history_size,
            clock=clock,
        )

    @classmethod
    async def create(cls, settings: Settings) -> "ServiceContainer":
        """Connect to the store and open the shared HTTP client."""
        state = StateManager(settings.redis_url)
        await state.connect()
        http_client = httpx.AsyncClient(timeout=settings.request_timeout)
        return cls(settings, state, http_client)

    def position_source(self, driver_id: str) -> QueuePositionSource:
        """Position feed for a driver, created on first use."""
        if driver_id not in self.position_sources:
            self.position_sources[driver_id] = QueuePositionSource()
        return self.position_sources[driver_id]

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def reset(self) -> None:
        """Drop in-memory counters and history."""
        self.rate_limits.reset()
        self.monitor.reset()

    async def close(self) -> None:
        await self.order_notifier.stop()
        await self.driver_watcher.close()
        await self.locations.stop_all()
        await self.connections.close_all()
        self.broker.close_all()
        await self.http_client.aclose()
        await self.state.disconnect()
        logger.info("services_closed")
