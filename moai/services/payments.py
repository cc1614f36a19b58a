"""Mercado Pago checkout client."""

from typing import Any

import httpx

from moai.errors import PaymentGatewayError
from moai.models.payment import (
    PaymentPreference,
    PaymentPreferenceRequest,
    PaymentStatusResult,
)
from moai.utils.logging import get_logger

logger = get_logger(__name__)

STATEMENT_DESCRIPTOR = "MOAI DELIVERY"
MAX_INSTALLMENTS = 12

PAYMENT_STATUS_TEXT = {
    "approved": "Pago aprobado",
    "pending": "Pago pendiente",
    "in_process": "Pago en proceso",
    "rejected": "Pago rechazado",
    "cancelled": "Pago cancelado",
    "refunded": "Pago reembolsado",
    "charged_back": "Contracargo",
}


def payment_status_text(status: str) -> str:
    return PAYMENT_STATUS_TEXT.get(status, "Estado desconocido")


def format_clp(amount: int | float) -> str:
    """Chilean peso display, e.g. ``$19.000``."""
    return "$" + f"{round(amount):,}".replace(",", ".")


class MercadoPagoClient:
    """Talks to the Mercado Pago REST API with an access token."""

    def __init__(
        self,
        access_token: str | None,
        client: httpx.AsyncClient,
        base_url: str = "https://api.mercadopago.com",
        app_base_url: str = "http://localhost:3000",
    ):
        self.access_token = access_token
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.app_base_url = app_base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def build_preference(self, request: PaymentPreferenceRequest) -> dict[str, Any]:
        """Preference body for a checkout in CLP."""
        return {
            "items": [
                {
                    "id": item.id,
                    "title": item.title,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "currency_id": "CLP",
                }
                for item in request.items
            ],
            "payer": {
                "email": request.customer_email,
                "name": request.customer_name,
            },
            "payment_methods": {
                "excluded_payment_methods": [],
                "excluded_payment_types": [],
                "installments": MAX_INSTALLMENTS,
            },
            "back_urls": {
                "success": f"{self.app_base_url}/payment/success",
                "failure": f"{self.app_base_url}/payment/failure",
                "pending": f"{self.app_base_url}/payment/pending",
            },
            "auto_return": "approved",
            "external_reference": request.order_id,
            "notification_url": f"{self.app_base_url}/api/mercadopago/webhook",
            "statement_descriptor": STATEMENT_DESCRIPTOR,
            "metadata": {"order_id": request.order_id},
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.configured:
            raise PaymentGatewayError("Mercado Pago access token is not configured")

        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"MercadoPago request failed: {e}") from e

        if response.is_error:
            raise PaymentGatewayError(
                f"MercadoPago API error: {response.status_code}",
                status_code=response.status_code,
            )

        return response.json()

    async def create_preference(self, request: PaymentPreferenceRequest) -> PaymentPreference:
        data = await self._request(
            "POST", "/checkout/preferences", json=self.build_preference(request)
        )

        preference = PaymentPreference(
            preference_id=str(data["id"]),
            init_point=data.get("init_point"),
            sandbox_init_point=data.get("sandbox_init_point"),
        )
        logger.info(
            "payment_preference_created",
            order_id=request.order_id,
            preference_id=preference.preference_id,
            amount=request.amount,
        )
        return preference

    async def get_payment_status(self, payment_id: str) -> PaymentStatusResult:
        data = await self._request("GET", f"/v1/payments/{payment_id}")

        return PaymentStatusResult(
            id=str(data["id"]),
            status=data["status"],
            status_detail=data.get("status_detail"),
            payment_method_id=data.get("payment_method_id"),
            payment_type_id=data.get("payment_type_id"),
            transaction_amount=data.get("transaction_amount"),
            currency_id=data.get("currency_id"),
            date_created=data.get("date_created"),
            date_approved=data.get("date_approved"),
            external_reference=data.get("external_reference"),
        )
