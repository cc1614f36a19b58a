"""Order-related data models."""

from datetime import datetime
from enum import Enum
from typing import Iterable
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from moai.config import FeeSettings
from moai.models.common import Location, utc_now


class OrderStatus(str, Enum):
    """Order status progression."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Delivered and cancelled orders never change again."""
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# Fixed lifecycle sequence; cancelled sits outside it.
STATUS_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERING,
    OrderStatus.DELIVERED,
)


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CASH_PENDING = "cash_pending"


class OrderItem(BaseModel):
    """Individual dish line in an order. Prices are whole CLP."""

    dish_id: str = Field(min_length=1)
    dish_name: str = Field(min_length=1)
    quantity: int = Field(ge=1, le=50)
    price: int = Field(ge=100, le=100000, description="Unit price in CLP")
    special_instructions: str | None = Field(default=None, max_length=200)

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class DeliveryInfo(BaseModel):
    """Where and to whom an order is delivered."""

    address: str = Field(min_length=5, max_length=200)
    phone: str = Field(min_length=6, max_length=20)
    instructions: str | None = Field(default=None, max_length=300)
    coordinates: Location | None = None


def calculate_subtotal(items: Iterable[OrderItem]) -> int:
    """Sum of price times quantity; independent of item order."""
    return sum(item.line_total for item in items)


def calculate_fees(subtotal: int, fees: FeeSettings) -> tuple[int, int]:
    """Return (delivery_fee, service_fee) for a subtotal."""
    service_fee = 0
    if fees.service_fee_enabled:
        service_fee = round(subtotal * fees.service_fee_percentage)

    delivery_fee = 0
    if fees.delivery_fee_enabled and subtotal < fees.free_delivery_threshold:
        delivery_fee = fees.delivery_base_rate

    return delivery_fee, service_fee


class Order(BaseModel):
    """Complete order document."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    customer_id: str
    customer_name: str
    cooker_id: str
    driver_id: str | None = None
    status: OrderStatus = OrderStatus.PENDING

    # Items
    dishes: list[OrderItem] = Field(default_factory=list)

    # Pricing (CLP)
    subtotal: int = Field(default=0, ge=0)
    delivery_fee: int = Field(default=0, ge=0)
    service_fee: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    # Payment
    payment_method: PaymentMethod = PaymentMethod.CARD
    payment_status: PaymentStatus = PaymentStatus.PENDING

    # Delivery details
    delivery_info: DeliveryInfo

    # Timing
    created_at: datetime = Field(default_factory=utc_now)
    accepted_at: datetime | None = None
    estimated_delivery_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    cancellation_reason: str | None = None

    @property
    def dish_count(self) -> int:
        return sum(item.quantity for item in self.dishes)

    @property
    def short_id(self) -> str:
        """Customer-facing order number."""
        return self.id[-8:]

    def calculate_totals(self, fees: FeeSettings | None = None) -> None:
        """Calculate all order totals."""
        self.subtotal = calculate_subtotal(self.dishes)
        self.delivery_fee, self.service_fee = calculate_fees(
            self.subtotal, fees or FeeSettings()
        )
        self.total = self.subtotal + self.delivery_fee + self.service_fee

    def add_item(self, item: OrderItem, fees: FeeSettings | None = None) -> None:
        """Add an item to the order."""
        self.dishes.append(item)
        self.calculate_totals(fees)


class CreateOrderRequest(BaseModel):
    """Checkout payload accepted by the order endpoint."""

    customer_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    cooker_id: str = Field(min_length=1)
    items: list[OrderItem] = Field(min_length=1, max_length=20)
    delivery_info: DeliveryInfo
    payment_method: PaymentMethod = PaymentMethod.CARD
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_order_amount(self) -> "CreateOrderRequest":
        subtotal = calculate_subtotal(self.items)
        if not 1000 <= subtotal <= 500000:
            raise ValueError("El total del pedido debe estar entre $1,000 y $500,000 CLP")
        return self


class UpdateOrderStatusRequest(BaseModel):
    """Status change request; cancellations must carry a reason."""

    status: OrderStatus
    cancellation_reason: str | None = Field(default=None, min_length=10, max_length=300)

    @model_validator(mode="after")
    def require_reason_for_cancel(self) -> "UpdateOrderStatusRequest":
        if self.status == OrderStatus.CANCELLED and not self.cancellation_reason:
            raise ValueError("Las órdenes canceladas requieren una razón")
        return self
