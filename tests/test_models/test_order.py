"""Tests for order models and totals."""

import pytest
from pydantic import ValidationError

from moai.config import FeeSettings
from moai.models.order import (
    CreateOrderRequest,
    DeliveryInfo,
    OrderItem,
    OrderStatus,
    UpdateOrderStatusRequest,
    calculate_fees,
    calculate_subtotal,
)


def test_subtotal_sums_price_times_quantity(sample_items: list[OrderItem]) -> None:
    """Test that the subtotal is the sum of every line."""
    assert calculate_subtotal(sample_items) == 19000


def test_subtotal_ignores_item_order(sample_items: list[OrderItem]) -> None:
    """Test that reordering the lines does not change the subtotal."""
    assert calculate_subtotal(reversed(sample_items)) == 19000
    assert calculate_subtotal([sample_items[1], sample_items[2], sample_items[0]]) == 19000


def test_order_totals_apply_service_fee(sample_order) -> None:
    """Test that default fees add a 12% service fee and no delivery fee."""
    assert sample_order.subtotal == 19000
    assert sample_order.service_fee == 2280
    assert sample_order.delivery_fee == 0
    assert sample_order.total == 21280


def test_delivery_fee_below_free_threshold() -> None:
    """Test that the delivery fee only applies under the free-delivery threshold."""
    fees = FeeSettings(delivery_fee_enabled=True, delivery_base_rate=1500, service_fee_enabled=False)

    assert calculate_fees(10000, fees) == (1500, 0)
    assert calculate_fees(30000, fees) == (0, 0)


def test_add_item_recalculates(sample_order) -> None:
    """Test that adding an item updates the totals."""
    sample_order.add_item(
        OrderItem(dish_id="empanada", dish_name="Empanada", quantity=1, price=1000)
    )

    assert sample_order.subtotal == 20000
    assert sample_order.dish_count == 7


def test_create_order_request_rejects_small_orders() -> None:
    """Test that orders under 1000 CLP are rejected."""
    with pytest.raises(ValidationError):
        CreateOrderRequest(
            customer_id="customer-1",
            customer_name="Ana",
            cooker_id="cook-1",
            items=[OrderItem(dish_id="pan", dish_name="Pan", quantity=1, price=500)],
            delivery_info=DeliveryInfo(address="Av. Italia 1020", phone="+56912345678"),
        )


def test_cancel_request_requires_reason() -> None:
    """Test that cancelling without a reason is invalid."""
    with pytest.raises(ValidationError):
        UpdateOrderStatusRequest(status=OrderStatus.CANCELLED)

    request = UpdateOrderStatusRequest(
        status=OrderStatus.CANCELLED,
        cancellation_reason="El cliente ya no está en casa",
    )
    assert request.cancellation_reason is not None


def test_terminal_statuses() -> None:
    assert OrderStatus.DELIVERED.is_terminal
    assert OrderStatus.CANCELLED.is_terminal
    assert not OrderStatus.DELIVERING.is_terminal
