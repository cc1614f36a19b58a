"""Notification payload models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field

from moai.models.common import utc_now


class NotificationPermission(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class NotificationAction(BaseModel):
    action: str
    title: str


class OrderNotificationData(BaseModel):
    """Input to the status-to-notification mapping."""

    order_id: str
    order_status: str
    cooker_name: str | None = None
    driver_name: str | None = None
    eta: str | None = None
    message: str | None = None
    url: str | None = None


class NotificationPayload(BaseModel):
    """Everything a transport needs to display a notification."""

    title: str
    body: str
    icon: str = "/icon-192x192.png"
    badge: str = "/icon-96x96.png"
    vibrate: list[int] = Field(default_factory=lambda: [200, 100, 200])
    require_interaction: bool = False
    actions: list[NotificationAction] = Field(default_factory=list)
    tag: str | None = None
    renotify: bool = False
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class NotificationPreferences(BaseModel):
    """Per-user notification settings, keyed by user id."""

    user_id: str
    permission: NotificationPermission = NotificationPermission.DEFAULT
    enabled: bool = True
    updated_at: datetime = Field(default_factory=utc_now)


class EmailDish(BaseModel):
    dish_name: str
    quantity: int = Field(ge=1)
    price: int = Field(ge=0, description="CLP per unit")


class OrderEmailRequest(BaseModel):
    """New-order email sent to the cook."""

    cook_email: EmailStr
    cook_name: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    dishes: list[EmailDish] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    delivery_address: str = ""
    order_date: datetime = Field(default_factory=utc_now)
