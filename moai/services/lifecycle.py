"""Order lifecycle: progress derivation and status transitions."""

from datetime import datetime
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from moai.errors import InvalidTransitionError
from moai.models.common import utc_now
from moai.models.order import STATUS_SEQUENCE, Order, OrderStatus, PaymentStatus
from moai.models.payment import PaymentStatusResult
from moai.services.payments import payment_status_text
from moai.state.documents import ORDERS, DocumentStore
from moai.utils.logging import get_logger

logger = get_logger(__name__)

# Gateway payment status -> (order payment status, order status it moves to)
PAYMENT_OUTCOMES: dict[str, tuple[PaymentStatus, OrderStatus | None]] = {
    "approved": (PaymentStatus.PAID, OrderStatus.ACCEPTED),
    "pending": (PaymentStatus.PENDING, None),
    "in_process": (PaymentStatus.PENDING, None),
    "rejected": (PaymentStatus.FAILED, OrderStatus.CANCELLED),
    "cancelled": (PaymentStatus.FAILED, OrderStatus.CANCELLED),
}


class StepState(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


class ProgressStep(BaseModel):
    id: str
    title: str
    description: str
    status: StepState
    timestamp: datetime | None = None
    estimated_time: str | None = None


class OrderProgress(BaseModel):
    """Derived view of where an order is in its lifecycle."""

    status: OrderStatus
    steps: list[ProgressStep]
    message: str
    elapsed: str

    @property
    def current_step(self) -> ProgressStep | None:
        return next((s for s in self.steps if s.status == StepState.CURRENT), None)


STEP_COPY: dict[OrderStatus, tuple[str, str]] = {
    OrderStatus.PENDING: ("Pedido Confirmado", "Tu pedido ha sido recibido"),
    OrderStatus.ACCEPTED: ("Cocinero Asignado", "El cocinero ha confirmado tu pedido"),
    OrderStatus.PREPARING: ("Preparando", "Tu comida se está cocinando"),
    OrderStatus.READY: ("Listo", "Tu pedido está listo para entregar"),
    OrderStatus.DELIVERING: ("En Camino", "Tu pedido está siendo entregado"),
    OrderStatus.DELIVERED: ("Entregado", "¡Disfruta tu comida!"),
}

CANCELLED_STEP = ("Pedido Cancelado", "El pedido ha sido cancelado")


def format_elapsed(since: datetime | None, now: datetime) -> str:
    """Spanish "time ago" string: ``hace 5m`` or ``hace 1h 20m``."""
    if since is None:
        return ""

    minutes = max(0, int((now - since).total_seconds() // 60))
    hours = minutes // 60

    if hours > 0:
        return f"hace {hours}h {minutes % 60}m"
    return f"hace {minutes}m"


def classify_step(step: OrderStatus, status: OrderStatus) -> StepState:
    """Completed / current / pending for one step of the fixed sequence."""
    if status == OrderStatus.CANCELLED:
        # Cancelled has no position on the sequence, so nothing before it counts
        # as reached and the synthetic cancelled step carries "current".
        return StepState.PENDING

    if status == OrderStatus.DELIVERED:
        return StepState.COMPLETED

    step_index = STATUS_SEQUENCE.index(step)
    current_index = STATUS_SEQUENCE.index(status)

    if step_index < current_index:
        return StepState.COMPLETED
    if step_index == current_index:
        return StepState.CURRENT
    return StepState.PENDING


def _step_message(
    step_id: str,
    steps: list[ProgressStep],
    now: datetime,
    estimated_delivery: str | None,
) -> str:
    if step_id == OrderStatus.PENDING.value:
        return "Esperando confirmación del cocinero..."
    if step_id == OrderStatus.ACCEPTED.value:
        return "El cocinero comenzará la preparación pronto"
    if step_id == OrderStatus.PREPARING.value:
        accepted = next(s for s in steps if s.id == OrderStatus.ACCEPTED.value)
        prep_time = format_elapsed(accepted.timestamp, now)
        return f"Preparando tu pedido ({prep_time})" if prep_time else "Preparando tu pedido"
    if step_id == OrderStatus.READY.value:
        return "Buscando conductor disponible..."
    if step_id == OrderStatus.DELIVERING.value:
        if estimated_delivery:
            return f"Llegada estimada: {estimated_delivery}"
        return "En camino hacia tu ubicación"
    if step_id == OrderStatus.CANCELLED.value:
        return "El pedido ha sido cancelado"
    return ""


def build_progress(
    status: OrderStatus,
    order_time: datetime,
    now: datetime | None = None,
    estimated_delivery: str | None = None,
    accepted_at: datetime | None = None,
) -> OrderProgress:
    """Derive per-step progress, a status message and elapsed time.

    Pure function of its arguments; ``now`` defaults to the current time.
    """
    now = now or utc_now()
    status = OrderStatus(status)

    steps = []
    for step in STATUS_SEQUENCE:
        title, description = STEP_COPY[step]
        timestamp = None
        if step == OrderStatus.PENDING:
            timestamp = order_time
        elif step == OrderStatus.ACCEPTED:
            timestamp = accepted_at

        steps.append(ProgressStep(
            id=step.value,
            title=title,
            description=description,
            status=classify_step(step, status),
            timestamp=timestamp,
            estimated_time=estimated_delivery if step == OrderStatus.DELIVERED else None,
        ))

    if status == OrderStatus.CANCELLED:
        title, description = CANCELLED_STEP
        steps.append(ProgressStep(
            id=OrderStatus.CANCELLED.value,
            title=title,
            description=description,
            status=StepState.CURRENT,
        ))

    current = next((s for s in steps if s.status == StepState.CURRENT), None)
    if current is not None:
        message = _step_message(current.id, steps, now, estimated_delivery)
    else:
        message = "¡Pedido entregado exitosamente!"

    return OrderProgress(
        status=status,
        steps=steps,
        message=message,
        elapsed=format_elapsed(order_time, now),
    )


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """Forward along the sequence, or to cancelled from any non-terminal state."""
    if current.is_terminal:
        return False
    if requested == OrderStatus.CANCELLED:
        return True
    return STATUS_SEQUENCE.index(requested) > STATUS_SEQUENCE.index(current)


class OrderLifecycleService:
    """Applies validated status changes to order documents."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock

    async def get_progress(
        self, order_id: str, estimated_delivery: str | None = None
    ) -> OrderProgress:
        order = await self.store.require(Order, ORDERS, order_id)
        return build_progress(
            order.status,
            order.created_at,
            now=self.clock(),
            estimated_delivery=estimated_delivery,
            accepted_at=order.accepted_at,
        )

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        cancellation_reason: str | None = None,
    ) -> Order:
        """Move an order to ``status``; raises InvalidTransitionError otherwise."""
        order = await self.store.require(Order, ORDERS, order_id)

        if not can_transition(order.status, status):
            logger.warning(
                "order_transition_rejected",
                order_id=order_id,
                current=order.status.value,
                requested=status.value,
            )
            raise InvalidTransitionError(order.status.value, status.value)

        previous = order.status
        _stamp(order, status, self.clock(), cancellation_reason)

        await self.store.set(ORDERS, order.id, order)

        logger.info(
            "order_status_updated",
            order_id=order_id,
            from_status=previous.value,
            to_status=status.value,
        )
        return order

    async def record_payment(self, order_id: str, payment: PaymentStatusResult) -> Order:
        """Apply a gateway payment result to an order.

        Approved payments accept the order and rejected or cancelled ones
        cancel it, but only where the lifecycle allows the move. A repeated
        notification for the same payment leaves the order where it is.
        """
        order = await self.store.require(Order, ORDERS, order_id)

        outcome = PAYMENT_OUTCOMES.get(payment.status)
        if outcome is None:
            logger.warning(
                "payment_status_unhandled",
                order_id=order_id,
                payment_id=payment.id,
                payment_status=payment.status,
            )
            return order

        payment_status, target = outcome
        previous = order.status
        now = self.clock()

        order.payment_status = payment_status
        order.updated_at = now
        if target is not None and target != order.status and can_transition(order.status, target):
            _stamp(order, target, now, payment_status_text(payment.status))

        await self.store.set(ORDERS, order.id, order)

        logger.info(
            "order_payment_recorded",
            order_id=order_id,
            payment_id=payment.id,
            payment_status=payment_status.value,
            from_status=previous.value,
            to_status=order.status.value,
        )
        return order


def _stamp(
    order: Order, status: OrderStatus, now: datetime, cancellation_reason: str | None
) -> None:
    order.status = status
    order.updated_at = now

    if status == OrderStatus.ACCEPTED:
        order.accepted_at = now
    elif status == OrderStatus.DELIVERED:
        order.delivered_at = now
    elif status == OrderStatus.CANCELLED:
        order.cancelled_at = now
        order.cancellation_reason = cancellation_reason
