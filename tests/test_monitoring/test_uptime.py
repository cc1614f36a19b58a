"""Tests for the uptime monitor."""

from datetime import datetime, timedelta

import httpx
import pytest

from moai.monitoring.uptime import HealthCheck, ServiceStatus, UptimeMetric, UptimeMonitor
from moai.state.manager import StateManager


def make_monitor(
    handler,
    state_manager: StateManager,
    now: datetime,
    timer=None,
    history_size: int = 1000,
) -> UptimeMonitor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs = {"timer": timer} if timer else {}
    return UptimeMonitor(
        client,
        state_manager,
        app_url="http://localhost:3000",
        history_size=history_size,
        clock=lambda: now,
        **kwargs,
    )


def metric(name: str, status: ServiceStatus, now: datetime, response_time: float = 100) -> UptimeMetric:
    return UptimeMetric(service_name=name, status=status, response_time=response_time, timestamp=now)


def always(status_code: int):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="Moai")

    return handler


@pytest.mark.asyncio
async def test_http_check_statuses(state_manager: StateManager, now: datetime) -> None:
    """Test up, wrong status and unreachable services."""
    up = make_monitor(always(200), state_manager, now)
    result = await up.check_http_service("main-app", "http://localhost:3000", timeout=5)
    assert result.status == ServiceStatus.UP
    assert result.error_message is None

    down = make_monitor(always(500), state_manager, now)
    result = await down.check_http_service("main-app", "http://localhost:3000", timeout=5)
    assert result.status == ServiceStatus.DOWN
    assert result.error_message == "Expected status 200, got 500"

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    unreachable = make_monitor(refuse, state_manager, now)
    result = await unreachable.check_http_service("main-app", "http://localhost:3000", timeout=5)
    assert result.status == ServiceStatus.DOWN
    assert "connection refused" in result.error_message


@pytest.mark.asyncio
async def test_slow_service_is_degraded(state_manager: StateManager, now: datetime) -> None:
    ticks = iter([0.0, 11.0])
    monitor = make_monitor(always(200), state_manager, now, timer=lambda: next(ticks))

    result = await monitor.check_http_service("main-app", "http://localhost:3000", timeout=15)

    assert result.status == ServiceStatus.DEGRADED
    assert result.error_message == "Slow response time: 11000ms"


@pytest.mark.asyncio
async def test_expected_content(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(200), state_manager, now)

    found = await monitor.check_http_service("app", "http://localhost", 5, expected_content="Moai")
    missing = await monitor.check_http_service("app", "http://localhost", 5, expected_content="Other")

    assert found.status == ServiceStatus.UP
    assert missing.status == ServiceStatus.DOWN


@pytest.mark.asyncio
async def test_notification_service_expects_400(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(400), state_manager, now)

    result = await monitor.check_notification_service()

    assert result.service_name == "firebase-fcm"
    assert result.status == ServiceStatus.UP


@pytest.mark.asyncio
async def test_check_store(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(200), state_manager, now)

    result = await monitor.check_store()

    assert result.service_name == "redis-store"
    assert result.status == ServiceStatus.UP


@pytest.mark.asyncio
async def test_full_health_check_overall(state_manager: StateManager, now: datetime) -> None:
    """Test that one down service makes the whole system down."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "fcm.googleapis.com":
            return httpx.Response(400)
        if request.url.host == "api.mercadopago.com":
            return httpx.Response(503)
        return httpx.Response(200)

    monitor = make_monitor(handler, state_manager, now)
    health = await monitor.perform_full_health_check()

    assert health.overall == ServiceStatus.DOWN
    assert health.summary["up_services"] == 3
    assert health.summary["down_services"] == 1
    assert len(monitor.metrics) == 4


def test_uptime_and_history(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(200), state_manager, now, history_size=3)
    assert monitor.calculate_uptime("main-app") == 100.0

    for status in [ServiceStatus.DOWN, ServiceStatus.UP, ServiceStatus.UP, ServiceStatus.UP]:
        monitor.record(metric("main-app", status, now))

    assert len(monitor.metrics) == 3
    assert monitor.calculate_uptime("main-app") == 100.0

    monitor.record(metric("main-app", ServiceStatus.DOWN, now))
    assert monitor.calculate_uptime("main-app") == pytest.approx(200 / 3)

    monitor.record(metric("main-app", ServiceStatus.UP, now - timedelta(hours=30)))
    assert len(monitor.service_metrics("main-app", last_minutes=24 * 60)) == 2


def test_health_summary_and_alerts(state_manager: StateManager, now: datetime) -> None:
    """Test that critical alerts come before warnings."""
    monitor = make_monitor(always(200), state_manager, now)
    for _ in range(99):
        monitor.record(metric("mercadopago", ServiceStatus.UP, now, 6000))
    monitor.record(metric("mercadopago", ServiceStatus.DOWN, now, 6000))
    monitor.record(metric("redis-store", ServiceStatus.UP, now, 2))

    summary = monitor.health_summary()
    assert summary["services"]["mercadopago"]["uptime"] == 99.0
    assert summary["services"]["mercadopago"]["last_status"] == "down"
    assert summary["overall"]["total_checks"] == 101

    current = HealthCheck(
        overall=ServiceStatus.DOWN,
        services=[
            UptimeMetric("redis-store", ServiceStatus.UP, 2, now),
            UptimeMetric("mercadopago", ServiceStatus.DOWN, 6000, now, "Expected status 200, got 503"),
        ],
        summary={},
    )
    alerts = monitor.generate_alerts(current, summary)

    assert alerts[0]["type"] == "critical"
    assert alerts[0]["service"] == "mercadopago"
    assert [a["type"] for a in alerts] == ["critical", "warning"]
    assert alerts[1]["message"] == "Slow response time: 6000ms"


def test_uptime_alerts_name_the_summary_window(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(200), state_manager, now)
    for _ in range(9):
        monitor.record(metric("firebase-fcm", ServiceStatus.UP, now - timedelta(minutes=30)))
    monitor.record(metric("firebase-fcm", ServiceStatus.DOWN, now - timedelta(minutes=30)))

    summary = monitor.health_summary(1)
    alerts = monitor.generate_alerts(HealthCheck(ServiceStatus.UP, [], {}), summary)

    assert summary["period_hours"] == 1
    assert alerts[0]["message"] == "Poor uptime over last 1h: 90.00%"


def test_export_metrics(state_manager: StateManager, now: datetime) -> None:
    monitor = make_monitor(always(200), state_manager, now)
    monitor.record(metric("redis-store", ServiceStatus.UP, now, 3))

    prometheus = monitor.export_metrics("prometheus")
    assert '# TYPE moai_service_up gauge' in prometheus
    assert 'moai_service_up{service="redis-store"} 1' in prometheus
    assert 'moai_service_uptime_percent{service="redis-store"} 100.0' in prometheus

    assert '"service_name": "redis-store"' in monitor.export_metrics("json")

    monitor.reset()
    assert monitor.metrics == []
