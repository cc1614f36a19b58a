"""HTTP API routes."""

import platform
import time
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import RedisError

from moai.errors import (
    DocumentNotFoundError,
    EmailDeliveryError,
    InvalidTransitionError,
    PaymentGatewayError,
)
from moai.middleware.rate_limit import rate_limit
from moai.models.common import Location, utc_now
from moai.models.notification import (
    NotificationPayload,
    NotificationPermission,
    NotificationPreferences,
    OrderEmailRequest,
)
from moai.models.order import (
    CreateOrderRequest,
    Order,
    OrderStatus,
    UpdateOrderStatusRequest,
)
from moai.models.payment import PaymentPreference, PaymentPreferenceRequest, PaymentStatusResult
from moai.models.route import OptimizedRoute
from moai.services.container import ServiceContainer
from moai.services.lifecycle import OrderProgress
from moai.services.routing import navigation_url
from moai.state.documents import ORDERS
from moai.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# Request/Response Models


class HealthResponse(BaseModel):
    """Service health; the endpoint answers 200 even when degraded."""

    status: Literal["ok", "degraded", "down"]
    timestamp: str
    services: dict[str, Literal["ok", "degraded", "down"]]
    performance: dict[str, float]
    version: str
    environment: str


class SystemStatusAction(BaseModel):
    action: str


class OptimizeRouteRequest(BaseModel):
    """Orders to sequence; defaults to every order that is ready for pickup."""

    driver_location: Location
    order_ids: list[str] | None = Field(default=None, max_length=50)


class OptimizeRouteResponse(BaseModel):
    route: OptimizedRoute
    navigation_url: str
    estimated_arrivals: dict[str, str]


class PreferencesUpdate(BaseModel):
    permission: NotificationPermission | None = None
    enabled: bool | None = None


# Dependencies


def get_services(request: Request) -> ServiceContainer:
    """Service container built at startup."""
    return request.app.state.services


async def require_admin(
    authorization: str | None = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Bearer token check for admin routes."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - Admin access required",
        )

    token = authorization.removeprefix("Bearer ").strip()
    if not services.settings.admin_token or token != services.settings.admin_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden - Invalid admin token",
        )


# Health


async def _store_health(services: ServiceContainer) -> str:
    try:
        await services.state.ping()
        return "ok"
    except (RedisError, OSError) as e:
        logger.error("store_health_failed", error=str(e))
        return "down"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> HealthResponse:
    """Configuration and store health. The status field carries the verdict."""
    start = time.perf_counter()
    settings = services.settings

    checks = {
        "database": await _store_health(services),
        "payment": (
            "ok" if settings.mercadopago_access_token and settings.mercadopago_public_key
            else "down"
        ),
        "notifications": (
            "ok" if settings.fcm_project_id and settings.fcm_client_email and settings.fcm_private_key
            else "down"
        ),
        "storage": "ok" if settings.storage_bucket else "down",
    }

    overall = "ok"
    if "down" in checks.values():
        overall = "down"
    elif "degraded" in checks.values():
        overall = "degraded"

    response.headers.update(NO_CACHE_HEADERS)
    return HealthResponse(
        status=overall,
        timestamp=utc_now().isoformat(),
        services=checks,
        performance={
            "response_time": round((time.perf_counter() - start) * 1000, 2),
            "uptime": round(services.uptime_seconds, 2),
        },
        version=settings.app_version,
        environment=settings.environment,
    )


@router.head("/health")
async def health_head() -> Response:
    """Liveness check without a body."""
    return Response(status_code=status.HTTP_200_OK, headers=NO_CACHE_HEADERS)


@router.get("/ready")
async def readiness_check(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    """Dependencies reachable: 200, otherwise 503."""
    checks = {"redis": await _store_health(services) == "ok"}
    ready = all(checks.values())

    return JSONResponse(
        {"status": "ready" if ready else "not_ready", "checks": checks},
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
    )


# Admin endpoints


@router.get(
    "/admin/system-status",
    dependencies=[Depends(rate_limit("sensitive")), Depends(require_admin)],
)
async def get_system_status(
    hours: int = 24,
    format: Literal["json", "prometheus"] = "json",
    services: ServiceContainer = Depends(get_services),
) -> Response:
    """Full health check, historical summary and alerts."""
    monitor = services.monitor
    health = await monitor.perform_full_health_check()
    summary = monitor.health_summary(hours)

    if format == "prometheus":
        return PlainTextResponse(
            monitor.export_metrics("prometheus"),
            media_type="text/plain; charset=utf-8",
        )

    return JSONResponse(
        {
            "timestamp": utc_now().isoformat(),
            "system": {
                "overall": health.overall.value,
                "uptime": services.uptime_seconds,
                "version": services.settings.app_version,
                "environment": services.settings.environment,
                "python_version": platform.python_version(),
            },
            "current": {
                "services": [metric.to_dict() for metric in health.services],
                "summary": health.summary,
            },
            "historical": {
                "period": f"{hours} hours",
                "services": summary["services"],
                "overall": summary["overall"],
            },
            "alerts": monitor.generate_alerts(health, summary),
        },
        headers={"Cache-Control": "no-cache, no-store, must-revalidate", "Pragma": "no-cache"},
    )


@router.post(
    "/admin/system-status",
    dependencies=[Depends(rate_limit("sensitive")), Depends(require_admin)],
)
async def update_system_status(
    request: SystemStatusAction,
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    """Manual monitor actions."""
    if request.action == "force-health-check":
        health = await services.monitor.perform_full_health_check()
        return {
            "message": "Health check completed",
            "result": health.to_dict(),
            "timestamp": utc_now().isoformat(),
        }

    if request.action == "clear-metrics":
        services.monitor.reset()
        logger.info("uptime_metrics_cleared")
        return {"message": "Metrics cleared", "timestamp": utc_now().isoformat()}

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown action")


# API documentation


@router.get("/docs")
async def api_docs(request: Request) -> dict[str, Any]:
    """OpenAPI document for this API."""
    return request.app.openapi()


# Email


@router.post(
    "/email/send-order-notification",
    dependencies=[Depends(rate_limit("api"))],
)
async def send_order_notification_email(
    payload: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    """Email the cook about a new order."""
    try:
        email_request = OrderEmailRequest.model_validate(payload)
    except ValidationError as e:
        logger.warning("order_email_invalid", errors=e.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Faltan campos requeridos",
        )

    try:
        await services.email.send_new_order_email(email_request)
    except EmailDeliveryError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error al enviar email",
        )

    return {"success": True, "message": "Email enviado exitosamente"}


# Payments


@router.post(
    "/mercadopago/create-preference",
    response_model=PaymentPreference,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("sensitive"))],
)
async def create_payment_preference(
    payload: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
) -> PaymentPreference:
    """Create a checkout preference for an order."""
    try:
        preference_request = PaymentPreferenceRequest.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payment request: {e.error_count()} invalid field(s)",
        )

    try:
        return await services.payments.create_preference(preference_request)
    except PaymentGatewayError as e:
        logger.error(
            "payment_preference_failed",
            order_id=preference_request.order_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create payment preference",
        )


@router.get(
    "/mercadopago/payment-status/{payment_id}",
    response_model=PaymentStatusResult,
)
async def get_payment_status(
    payment_id: str,
    services: ServiceContainer = Depends(get_services),
) -> PaymentStatusResult:
    try:
        return await services.payments.get_payment_status(payment_id)
    except PaymentGatewayError as e:
        logger.error("payment_status_failed", payment_id=payment_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get payment status",
        )


@router.post("/mercadopago/webhook", response_model=None)
async def mercadopago_webhook(
    payload: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any] | JSONResponse:
    """
    Payment notification from Mercado Pago.

    The notification only carries the payment id; the payment itself is
    fetched from the gateway and applied to the order it references.
    """
    data = payload.get("data")
    payment_id = data.get("id") if isinstance(data, dict) else None

    if payload.get("type") != "payment" or payment_id is None:
        logger.info("mercadopago_webhook_ignored", event_type=payload.get("type"))
        return {"received": True}

    try:
        payment = await services.payments.get_payment_status(str(payment_id))
    except PaymentGatewayError as e:
        logger.error("mercadopago_webhook_failed", payment_id=payment_id, error=str(e))
        return JSONResponse(
            {"error": "Webhook processing failed"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if not payment.external_reference:
        logger.warning("mercadopago_webhook_without_order", payment_id=payment.id)
        return {"received": True}

    try:
        order = await services.lifecycle.record_payment(payment.external_reference, payment)
    except DocumentNotFoundError:
        logger.warning(
            "mercadopago_webhook_unknown_order",
            payment_id=payment.id,
            order_id=payment.external_reference,
        )
        return {"received": True}

    return {
        "received": True,
        "order_id": order.id,
        "order_status": order.status.value,
        "payment_status": order.payment_status.value,
    }


# Order endpoints


@router.post(
    "/orders",
    response_model=Order,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("api"))],
)
async def create_order(
    request: CreateOrderRequest,
    services: ServiceContainer = Depends(get_services),
) -> Order:
    """Place a new order in pending status."""
    order = Order(
        customer_id=request.customer_id,
        customer_name=request.customer_name,
        cooker_id=request.cooker_id,
        dishes=request.items,
        payment_method=request.payment_method,
        delivery_info=request.delivery_info,
    )
    order.calculate_totals(services.settings.fees)

    await services.store.set(ORDERS, order.id, order)

    logger.info(
        "order_created",
        order_id=order.id,
        customer_id=order.customer_id,
        cooker_id=order.cooker_id,
        total=order.total,
    )
    return order


@router.get("/orders/{order_id}/progress", response_model=OrderProgress)
async def get_order_progress(
    order_id: str,
    services: ServiceContainer = Depends(get_services),
) -> OrderProgress:
    """Step-by-step progress of an order."""
    tracking = await services.tracking.get(order_id)
    estimated_delivery = tracking.estimated_delivery_time if tracking else None

    try:
        return await services.lifecycle.get_progress(
            order_id, estimated_delivery=estimated_delivery or None
        )
    except DocumentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")


@router.patch("/orders/{order_id}/status", response_model=Order)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    services: ServiceContainer = Depends(get_services),
) -> Order:
    """Move an order forward in its lifecycle, or cancel it."""
    try:
        return await services.lifecycle.update_status(
            order_id, request.status, cancellation_reason=request.cancellation_reason
        )
    except DocumentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# Route planning


@router.post(
    "/routes/optimize",
    response_model=OptimizeRouteResponse,
    dependencies=[Depends(rate_limit("api"))],
)
async def optimize_route(
    request: OptimizeRouteRequest,
    services: ServiceContainer = Depends(get_services),
) -> OptimizeRouteResponse:
    """Sequence pending deliveries for a driver."""
    if request.order_ids is None:
        orders = await services.store.query(Order, ORDERS, status=OrderStatus.READY.value)
    else:
        orders = []
        for order_id in request.order_ids:
            order = await services.store.get(Order, ORDERS, order_id)
            if order is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Order {order_id} not found",
                )
            orders.append(order)

    route = await services.routes.optimize(orders, request.driver_location)
    arrivals = services.routes.estimated_arrival_times(route)

    return OptimizeRouteResponse(
        route=route,
        navigation_url=navigation_url(route.points),
        estimated_arrivals={order_id: at.isoformat() for order_id, at in arrivals.items()},
    )


# Notification settings


@router.put(
    "/notifications/{user_id}/preferences",
    response_model=NotificationPreferences,
)
async def update_notification_preferences(
    user_id: str,
    request: PreferencesUpdate,
    services: ServiceContainer = Depends(get_services),
) -> NotificationPreferences:
    preferences = await services.notifications.get_preferences(user_id)

    if request.permission is not None:
        preferences = await services.notifications.set_permission(user_id, request.permission)
    if request.enabled is not None:
        preferences = await services.notifications.set_enabled(user_id, request.enabled)

    return preferences


@router.get(
    "/notifications/{user_id}/inbox",
    response_model=list[NotificationPayload],
)
async def get_notification_inbox(
    user_id: str,
    services: ServiceContainer = Depends(get_services),
) -> list[NotificationPayload]:
    """Notifications stored while the user had no open channel."""
    return await services.inbox.inbox(user_id)
