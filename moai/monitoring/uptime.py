"""Service availability checks and uptime history."""

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

import httpx
from redis.exceptions import RedisError

from moai.models.common import utc_now
from moai.state.manager import StateManager
from moai.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Moai-Uptime-Monitor/1.0"


class ServiceStatus(str, Enum):
    UP = "up"
    DOWN = "down"
    DEGRADED = "degraded"


@dataclass
class UptimeMetric:
    """Result of one service check."""

    service_name: str
    status: ServiceStatus
    response_time: float
    timestamp: datetime
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class HealthCheck:
    overall: ServiceStatus
    services: list[UptimeMetric]
    summary: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "services": [metric.to_dict() for metric in self.services],
            "summary": self.summary,
        }


class UptimeMonitor:
    """Runs checks and keeps a bounded in-memory history of their results."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        state: StateManager,
        app_url: str,
        payment_api_url: str = "https://api.mercadopago.com",
        history_size: int = 1000,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.client = client
        self.state = state
        self.app_url = app_url
        self.payment_api_url = payment_api_url.rstrip("/")
        self.history_size = history_size
        self.clock = clock
        self.timer = timer
        self.metrics: list[UptimeMetric] = []

    def _elapsed_ms(self, start: float) -> float:
        return (self.timer() - start) * 1000

    async def check_http_service(
        self,
        service_name: str,
        url: str,
        timeout: float,
        expected_status: int = 200,
        expected_content: str | None = None,
    ) -> UptimeMetric:
        """HEAD ``url``: wrong status is down, over 10 s is degraded."""
        start = self.timer()
        method = "GET" if expected_content else "HEAD"

        try:
            response = await self.client.request(
                method, url, timeout=timeout, headers={"User-Agent": USER_AGENT}
            )
        except httpx.HTTPError as e:
            return self.record(UptimeMetric(
                service_name=service_name,
                status=ServiceStatus.DOWN,
                response_time=self._elapsed_ms(start),
                timestamp=self.clock(),
                error_message=str(e) or type(e).__name__,
            ))

        response_time = self._elapsed_ms(start)
        status = ServiceStatus.UP
        error_message = None

        if response.status_code != expected_status:
            status = ServiceStatus.DOWN
            error_message = f"Expected status {expected_status}, got {response.status_code}"
        elif response_time > 10000:
            status = ServiceStatus.DEGRADED
            error_message = f"Slow response time: {round(response_time)}ms"
        elif expected_content and expected_content not in response.text:
            status = ServiceStatus.DOWN
            error_message = f"Expected content not found: {expected_content}"

        return self.record(UptimeMetric(
            service_name=service_name,
            status=status,
            response_time=response_time,
            timestamp=self.clock(),
            error_message=error_message,
        ))

    async def check_store(self) -> UptimeMetric:
        """Ping the document store; over 5 s is degraded."""
        start = self.timer()

        try:
            await self.state.ping()
        except (RedisError, OSError) as e:
            return self.record(UptimeMetric(
                service_name="redis-store",
                status=ServiceStatus.DOWN,
                response_time=self._elapsed_ms(start),
                timestamp=self.clock(),
                error_message=str(e) or "Store connection failed",
            ))

        response_time = self._elapsed_ms(start)
        status = ServiceStatus.UP
        error_message = None

        if response_time > 5000:
            status = ServiceStatus.DEGRADED
            error_message = f"Slow database response: {round(response_time)}ms"

        return self.record(UptimeMetric(
            service_name="redis-store",
            status=status,
            response_time=response_time,
            timestamp=self.clock(),
            error_message=error_message,
        ))

    async def check_payment_service(self) -> UptimeMetric:
        return await self.check_http_service(
            "mercadopago", f"{self.payment_api_url}/v1/payment_methods", timeout=10
        )

    async def check_notification_service(self) -> UptimeMetric:
        # FCM answers 400 without credentials when it is up
        return await self.check_http_service(
            "firebase-fcm", "https://fcm.googleapis.com/fcm/send", timeout=5, expected_status=400
        )

    async def perform_full_health_check(self) -> HealthCheck:
        services = list(await asyncio.gather(
            self.check_store(),
            self.check_payment_service(),
            self.check_notification_service(),
            self.check_http_service("main-app", self.app_url, timeout=15),
        ))

        up = sum(1 for s in services if s.status == ServiceStatus.UP)
        down = sum(1 for s in services if s.status == ServiceStatus.DOWN)
        degraded = sum(1 for s in services if s.status == ServiceStatus.DEGRADED)

        overall = ServiceStatus.UP
        if down:
            overall = ServiceStatus.DOWN
        elif degraded:
            overall = ServiceStatus.DEGRADED

        return HealthCheck(
            overall=overall,
            services=services,
            summary={
                "up_services": up,
                "down_services": down,
                "degraded_services": degraded,
                "average_response_time": sum(s.response_time for s in services) / len(services),
            },
        )

    def record(self, metric: UptimeMetric) -> UptimeMetric:
        self.metrics.append(metric)
        if len(self.metrics) > self.history_size:
            self.metrics = self.metrics[-self.history_size:]

        if metric.status == ServiceStatus.DOWN:
            logger.error(
                "service_down", service=metric.service_name, error=metric.error_message
            )
        elif metric.status == ServiceStatus.DEGRADED:
            logger.warning(
                "service_degraded", service=metric.service_name, error=metric.error_message
            )
        return metric

    def service_metrics(self, service_name: str, last_minutes: int = 60) -> list[UptimeMetric]:
        cutoff = self.clock() - timedelta(minutes=last_minutes)
        return [
            m for m in self.metrics
            if m.service_name == service_name and m.timestamp > cutoff
        ]

    def calculate_uptime(self, service_name: str, last_hours: int = 24) -> float:
        """Percentage of checks that were up; 100 with no data."""
        metrics = self.service_metrics(service_name, last_hours * 60)
        if not metrics:
            return 100.0
        up = sum(1 for m in metrics if m.status == ServiceStatus.UP)
        return up / len(metrics) * 100

    def health_summary(self, last_hours: int = 24) -> dict[str, Any]:
        cutoff = self.clock() - timedelta(hours=last_hours)
        recent = [m for m in self.metrics if m.timestamp > cutoff]

        services: dict[str, dict[str, Any]] = {}
        for name in dict.fromkeys(m.service_name for m in recent):
            service_metrics = [m for m in recent if m.service_name == name]
            up = sum(1 for m in service_metrics if m.status == ServiceStatus.UP)
            average = sum(m.response_time for m in service_metrics) / len(service_metrics)
            last = service_metrics[-1]
            services[name] = {
                "uptime": up / len(service_metrics) * 100,
                "average_response_time": round(average),
                "last_status": last.status.value,
                "last_check": last.timestamp.isoformat(),
            }

        total_up = sum(1 for m in recent if m.status == ServiceStatus.UP)
        return {
            "period_hours": last_hours,
            "services": services,
            "overall": {
                "system_uptime": total_up / len(recent) * 100 if recent else 100.0,
                "total_checks": len(recent),
                "average_response_time": (
                    round(sum(m.response_time for m in recent) / len(recent)) if recent else 0
                ),
            },
        }

    def generate_alerts(
        self, current: HealthCheck, summary: dict[str, Any]
    ) -> list[dict[str, str]]:
        """Alerts for down/degraded services, poor uptime and slow responses; critical first."""
        timestamp = self.clock().isoformat()
        alerts = []

        def alert(level: str, service: str, message: str) -> None:
            alerts.append({
                "type": level,
                "service": service,
                "message": message,
                "timestamp": timestamp,
            })

        for service in current.services:
            if service.status == ServiceStatus.DOWN:
                alert("critical", service.service_name,
                      f"Service is currently down: {service.error_message}")
            elif service.status == ServiceStatus.DEGRADED:
                alert("warning", service.service_name,
                      f"Service is degraded: {service.error_message}")

        window = f"last {summary['period_hours']}h"
        for name, data in summary["services"].items():
            if data["uptime"] < 95:
                alert("critical", name, f"Poor uptime over {window}: {data['uptime']:.2f}%")
            elif data["uptime"] < 99:
                alert("warning", name, f"Below target uptime over {window}: {data['uptime']:.2f}%")

        for name, data in summary["services"].items():
            if data["average_response_time"] > 10000:
                alert("critical", name, f"Very slow response time: {data['average_response_time']}ms")
            elif data["average_response_time"] > 5000:
                alert("warning", name, f"Slow response time: {data['average_response_time']}ms")

        system_uptime = summary["overall"]["system_uptime"]
        if system_uptime < 95:
            alert(
                "critical",
                "system",
                f"System-wide uptime below critical threshold: {system_uptime:.2f}%",
            )

        priority = {"critical": 0, "warning": 1, "info": 2}
        return sorted(alerts, key=lambda a: priority[a["type"]])

    def export_metrics(self, fmt: str = "json") -> str:
        if fmt == "prometheus":
            return self.to_prometheus()

        return json.dumps(
            {
                "timestamp": self.clock().isoformat(),
                "metrics": [m.to_dict() for m in self.metrics[-100:]],
                "summary": self.health_summary(),
            },
            indent=2,
        )

    def to_prometheus(self) -> str:
        services = self.health_summary()["services"]
        lines = [
            "# HELP moai_service_up Service availability (1 = up, 0 = down)",
            "# TYPE moai_service_up gauge",
        ]
        for name, data in services.items():
            lines.append(f'moai_service_up{{service="{name}"}} {1 if data["last_status"] == "up" else 0}')

        lines += [
            "",
            "# HELP moai_service_response_time_ms Service response time in milliseconds",
            "# TYPE moai_service_response_time_ms gauge",
        ]
        for name, data in services.items():
            lines.append(f'moai_service_response_time_ms{{service="{name}"}} {data["average_response_time"]}')

        lines += [
            "",
            "# HELP moai_service_uptime_percent Service uptime percentage",
            "# TYPE moai_service_uptime_percent gauge",
        ]
        for name, data in services.items():
            lines.append(f'moai_service_uptime_percent{{service="{name}"}} {data["uptime"]}')

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        self.metrics.clear()
