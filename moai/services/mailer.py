"""New-order email to cooks."""

import asyncio
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Callable

from moai.errors import EmailDeliveryError
from moai.models.notification import OrderEmailRequest
from moai.services.payments import format_clp
from moai.utils.logging import get_logger

logger = get_logger(__name__)

SPANISH_WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
SPANISH_MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #F57C00; color: white; padding: 20px; text-align: center; }
    .content { background: #fff; border: 1px solid #ddd; padding: 20px; }
    .order-info { background: #f9f9f9; padding: 15px; margin: 15px 0; }
    .dishes-table { width: 100%; border-collapse: collapse; margin: 15px 0; }
    .total { font-size: 18px; font-weight: bold; color: #F57C00; text-align: right; }
    .btn { display: inline-block; padding: 12px 24px; margin: 0 10px; text-decoration: none; }
    .btn-confirm { background: #4CAF50; color: white; }
    .btn-reject { background: #f44336; color: white; }
    .footer { text-align: center; margin-top: 30px; font-size: 12px; color: #666; }
"""


def format_order_date(request: OrderEmailRequest) -> str:
    moment = request.order_date
    weekday = SPANISH_WEEKDAYS[moment.weekday()]
    month = SPANISH_MONTHS[moment.month - 1]
    return f"{weekday}, {moment.day} de {month} de {moment.year}, {moment:%H:%M}"


class OrderEmailService:
    """Renders and sends the "Nuevo Pedido" email over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        base_url: str,
        use_tls: bool = True,
        sender: Callable[[EmailMessage], None] | None = None,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.use_tls = use_tls
        self._sender = sender or self._smtp_send

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def dashboard_links(self, order_id: str) -> tuple[str, str]:
        dashboard = f"{self.base_url}/cooker/dashboard"
        return f"{dashboard}?confirm={order_id}", f"{dashboard}?reject={order_id}"

    def render_html(self, request: OrderEmailRequest) -> str:
        confirm_url, reject_url = self.dashboard_links(request.order_id)
        rows = "".join(
            f"<tr><td>{escape(dish.dish_name)}</td>"
            f"<td style=\"text-align: center;\">{dish.quantity}</td>"
            f"<td style=\"text-align: right;\">{format_clp(dish.price * dish.quantity)}</td></tr>"
            for dish in request.dishes
        )

        return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Nuevo Pedido - Moai</title>
  <style>{_STYLE}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>🍽️ Nuevo Pedido Recibido</h1>
      <p>Tienes un nuevo pedido esperando confirmación</p>
    </div>
    <div class="content">
      <h2>¡Hola {escape(request.cook_name)}!</h2>
      <p>Has recibido un nuevo pedido en Moai. Por favor revisa los detalles y confirma si puedes prepararlo.</p>
      <div class="order-info">
        <h3>📋 Detalles del Pedido</h3>
        <p><strong>Número de Pedido:</strong> #{escape(request.order_id[-8:])}</p>
        <p><strong>Cliente:</strong> {escape(request.customer_name)}</p>
        <p><strong>Fecha:</strong> {format_order_date(request)}</p>
        <p><strong>Dirección de Entrega:</strong> {escape(request.delivery_address)}</p>
      </div>
      <h3>🍽️ Platos Solicitados</h3>
      <table class="dishes-table">
        <thead><tr><th>Plato</th><th>Cantidad</th><th>Subtotal</th></tr></thead>
        <tbody>{rows}</tbody>
      </table>
      <div class="total">Total del Pedido: {format_clp(request.total)}</div>
      <div class="actions">
        <a href="{confirm_url}" class="btn btn-confirm">✅ Confirmar Pedido</a>
        <a href="{reject_url}" class="btn btn-reject">❌ Rechazar Pedido</a>
      </div>
      <p><strong>⏰ Tiempo de Respuesta:</strong> Por favor confirma o rechaza este pedido en los próximos 15 minutos.</p>
      <p><a href="{self.base_url}/cooker/dashboard">🔗 Ir al Dashboard de Cocinero</a></p>
    </div>
    <div class="footer">
      <p>Este es un email automático de Moai. No respondas a este mensaje.</p>
      <p>© {request.order_date.year} Moai - Plataforma de Delivery Artesanal</p>
    </div>
  </div>
</body>
</html>
"""

    def render_text(self, request: OrderEmailRequest) -> str:
        confirm_url, reject_url = self.dashboard_links(request.order_id)
        dishes = "\n".join(
            f"- {dish.dish_name} x{dish.quantity}: {format_clp(dish.price * dish.quantity)}"
            for dish in request.dishes
        )

        return (
            f"¡Hola {request.cook_name}!\n\n"
            "Has recibido un nuevo pedido en Moai.\n\n"
            f"Número de Pedido: #{request.order_id[-8:]}\n"
            f"Cliente: {request.customer_name}\n"
            f"Fecha: {format_order_date(request)}\n"
            f"Dirección de Entrega: {request.delivery_address}\n\n"
            f"Platos Solicitados:\n{dishes}\n\n"
            f"Total del Pedido: {format_clp(request.total)}\n\n"
            f"Confirmar: {confirm_url}\n"
            f"Rechazar: {reject_url}\n"
        )

    def build_message(self, request: OrderEmailRequest) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = (
            f"🍽️ Nuevo Pedido #{request.order_id[-8:]} - Confirma tu disponibilidad"
        )
        message["From"] = f"Moai - Nuevo Pedido <{self.user}>"
        message["To"] = str(request.cook_email)
        message.set_content(self.render_text(request))
        message.add_alternative(self.render_html(request), subtype="html")
        return message

    async def send_new_order_email(self, request: OrderEmailRequest) -> None:
        """Send the email from a worker thread; raises EmailDeliveryError."""
        message = self.build_message(request)

        try:
            await asyncio.to_thread(self._sender, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("order_email_failed", order_id=request.order_id, error=str(e))
            raise EmailDeliveryError(f"Error al enviar email: {e}") from e

        logger.info("order_email_sent", order_id=request.order_id, to=str(request.cook_email))

    def _smtp_send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(message)
