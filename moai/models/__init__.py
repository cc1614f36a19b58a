"""Data models for the delivery backend."""

from moai.models.common import Location, TimedLocation
from moai.models.cook import Cook
from moai.models.driver import (
    DeliveryStep,
    DeliveryTracking,
    Driver,
    DriverLocation,
    VehicleType,
)
from moai.models.notification import (
    EmailDish,
    NotificationPayload,
    NotificationPermission,
    NotificationPreferences,
    OrderEmailRequest,
    OrderNotificationData,
)
from moai.models.order import (
    STATUS_SEQUENCE,
    DeliveryInfo,
    Order,
    OrderItem,
    OrderStatus,
)
from moai.models.payment import PaymentPreferenceRequest, PaymentStatusResult
from moai.models.route import OptimizedRoute, PriorityTier, RoutePoint

__all__ = [
    # Common
    "Location",
    "TimedLocation",
    # Cook
    "Cook",
    # Driver
    "Driver",
    "DriverLocation",
    "VehicleType",
    "DeliveryStep",
    "DeliveryTracking",
    # Notification
    "NotificationPayload",
    "NotificationPermission",
    "NotificationPreferences",
    "OrderNotificationData",
    "OrderEmailRequest",
    "EmailDish",
    # Order
    "Order",
    "OrderItem",
    "OrderStatus",
    "DeliveryInfo",
    "STATUS_SEQUENCE",
    # Payment
    "PaymentPreferenceRequest",
    "PaymentStatusResult",
    # Route
    "RoutePoint",
    "OptimizedRoute",
    "PriorityTier",
]
