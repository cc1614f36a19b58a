"""Driver and delivery tracking models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from moai.models.common import TimedLocation, utc_now


class VehicleType(str, Enum):
    """Vehicle kinds a driver can register."""

    BIKE = "bike"
    MOTORCYCLE = "motorcycle"
    CAR = "car"


class VehicleInfo(BaseModel):
    make: str
    model: str
    year: int = Field(ge=1980, le=2100)
    license_plate: str
    color: str


class DriverLocation(BaseModel):
    """Last published position of a driver."""

    coordinates: TimedLocation
    last_updated: datetime = Field(default_factory=utc_now)
    speed: float | None = None
    heading: float | None = None


class Driver(BaseModel):
    """Delivery driver profile."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    display_name: str
    phone: str | None = None
    vehicle_type: VehicleType = VehicleType.CAR
    vehicle_info: VehicleInfo | None = None
    is_online: bool = False
    is_available: bool = False
    current_order_id: str | None = None
    current_location: DriverLocation | None = None
    rating: float = Field(default=5.0, ge=0, le=5)
    review_count: int = 0
    total_deliveries: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    last_location_update: datetime | None = None


class DeliveryStep(str, Enum):
    """Driver progress on an accepted delivery."""

    HEADING_TO_PICKUP = "heading_to_pickup"
    AT_PICKUP = "at_pickup"
    HEADING_TO_DELIVERY = "heading_to_delivery"
    DELIVERED = "delivered"


class DeliveryTracking(BaseModel):
    """Live tracking document for an order in delivery, keyed by order id."""

    order_id: str
    driver_id: str
    driver_name: str
    current_location: TimedLocation | None = None
    current_step: DeliveryStep = DeliveryStep.HEADING_TO_PICKUP
    estimated_pickup_time: str = ""
    estimated_delivery_time: str = ""
    total_estimated_time: str = ""
    last_updated: datetime = Field(default_factory=utc_now)
