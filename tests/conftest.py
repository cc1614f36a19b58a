"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import fakeredis
import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from moai.config import Settings
from moai.main import create_app
from moai.models.common import Location
from moai.models.cook import Cook
from moai.models.driver import Driver, VehicleType
from moai.models.order import DeliveryInfo, Order, OrderItem, OrderStatus
from moai.services.container import ServiceContainer
from moai.state.documents import DocumentStore
from moai.state.manager import StateManager

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

ADMIN_TOKEN = "test-admin-token"

# Santiago centre, used as the driver's starting point
SANTIAGO = Location(lat=-33.4489, lng=-70.6693)


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# Payment id -> gateway status answered by the Mercado Pago mock
PAYMENT_STATUSES = {"42": "approved", "43": "rejected", "44": "in_process", "45": "refunded"}


def mock_external_service(request: httpx.Request) -> httpx.Response:
    """Canned answers for every outbound host the services call."""
    host = request.url.host
    path = request.url.path

    if host == "api.mercadopago.com":
        if path == "/checkout/preferences":
            return httpx.Response(
                201,
                json={
                    "id": 123456789,
                    "init_point": "https://www.mercadopago.cl/checkout/v1/redirect?pref_id=123456789",
                    "sandbox_init_point": "https://sandbox.mercadopago.cl/checkout/v1/redirect?pref_id=123456789",
                },
            )
        if path.startswith("/v1/payments/"):
            payment_id = path.rsplit("/", 1)[-1]
            if payment_id not in PAYMENT_STATUSES:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(
                200,
                json={
                    "id": int(payment_id),
                    "status": PAYMENT_STATUSES[payment_id],
                    "status_detail": "accredited",
                    "payment_method_id": "visa",
                    "payment_type_id": "credit_card",
                    "transaction_amount": 21280,
                    "currency_id": "CLP",
                    "external_reference": "order-0001",
                },
            )
        if path == "/v1/payment_methods":
            return httpx.Response(200, json=[])

    if host == "fcm.googleapis.com":
        return httpx.Response(400)

    if host == "maps.googleapis.com":
        return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})

    if host == "localhost":
        return httpx.Response(200, text="Moai")

    return httpx.Response(404)


@pytest.fixture
def now() -> datetime:
    """Fixed time every service clock in the container returns."""
    return NOW


@pytest.fixture
def driver_start() -> Location:
    return SANTIAGO


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        admin_token=ADMIN_TOKEN,
        log_format="text",
        mercadopago_access_token="TEST-access-token",
        app_base_url="http://localhost:3000",
    )


@pytest_asyncio.fixture
async def state_manager() -> AsyncGenerator[StateManager, None]:
    """State manager over an in-process Redis."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    manager = StateManager("redis://test", client=client)
    yield manager
    await manager.disconnect()


@pytest_asyncio.fixture
async def store(state_manager: StateManager) -> DocumentStore:
    """Document store over the test state manager."""
    return DocumentStore(state_manager)


@pytest.fixture
def rate_limit_clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def container(
    settings: Settings,
    state_manager: StateManager,
    rate_limit_clock: FakeClock,
) -> AsyncGenerator[ServiceContainer, None]:
    """Service container with a fixed clock and mocked outbound HTTP."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(mock_external_service))
    services = ServiceContainer(
        settings,
        state_manager,
        http_client,
        clock=lambda: NOW,
        rate_limit_clock=rate_limit_clock,
    )
    yield services
    await services.close()


@pytest_asyncio.fixture
async def app(container: ServiceContainer) -> FastAPI:
    """Application wired to the test container (lifespan does not run)."""
    application = create_app(container.settings)
    application.state.services = container
    return application


@pytest_asyncio.fixture
async def test_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# Sample data fixtures


@pytest.fixture
def sample_items() -> list[OrderItem]:
    """Three dish lines adding up to 19000 CLP."""
    return [
        OrderItem(dish_id="pastel-choclo", dish_name="Pastel de choclo", quantity=2, price=5000),
        OrderItem(dish_id="cazuela", dish_name="Cazuela", quantity=1, price=3000),
        OrderItem(dish_id="sopaipillas", dish_name="Sopaipillas", quantity=3, price=2000),
    ]


@pytest.fixture
def sample_cook() -> Cook:
    """Create a sample cook."""
    return Cook(
        id="cook-1",
        display_name="Carmen Rojas",
        email="carmen@example.com",
        is_online=True,
        location=Location(lat=-33.4372, lng=-70.6506),
    )


@pytest.fixture
def sample_driver() -> Driver:
    """Create a sample driver."""
    return Driver(
        id="driver-1",
        display_name="Juan Pérez",
        vehicle_type=VehicleType.MOTORCYCLE,
        is_online=True,
        is_available=True,
        rating=4.8,
    )


@pytest.fixture
def sample_order(sample_items: list[OrderItem], sample_cook: Cook) -> Order:
    """Create a sample order placed five minutes before NOW."""
    order = Order(
        id="order-0001",
        customer_id="customer-1",
        customer_name="Ana Silva",
        cooker_id=sample_cook.id,
        dishes=sample_items,
        delivery_info=DeliveryInfo(
            address="Av. Italia 1020, Ñuñoa",
            phone="+56912345678",
            coordinates=Location(lat=-33.4450, lng=-70.6230),
        ),
        status=OrderStatus.PENDING,
        created_at=NOW - timedelta(minutes=5),
    )
    order.calculate_totals()
    return order
