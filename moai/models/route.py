"""Route sequencing models. None of these are persisted."""

from enum import Enum

from pydantic import BaseModel, Field


class PriorityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Used to pre-sort stops before the nearest-neighbour pass.
PRIORITY_WEIGHT = {PriorityTier.HIGH: 3, PriorityTier.MEDIUM: 2, PriorityTier.LOW: 1}


class RoutePoint(BaseModel):
    """One delivery stop built from an order."""

    id: str
    order_id: str
    customer_name: str
    address: str
    lat: float | None = None
    lng: float | None = None
    priority: PriorityTier
    order_value: int
    estimated_delivery_time: int = Field(description="Service time at the stop, minutes")

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class OptimizedRoute(BaseModel):
    """Visiting order plus route metrics."""

    points: list[RoutePoint]
    total_distance: float = Field(description="Kilometres")
    total_time: int = Field(description="Minutes")
    estimated_fuel_cost: int = Field(description="CLP")
    efficiency: int = Field(ge=0, le=100)
