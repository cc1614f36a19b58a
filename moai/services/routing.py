"""Delivery route sequencing.

Greedy nearest-neighbour ordering of pending orders starting from the
driver's position. Distances to high-priority stops are shrunk and distances
to low-priority stops stretched before picking the next stop, so urgent or
valuable orders are pulled forward without ignoring geography.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Iterable
from urllib.parse import quote

from moai.config import RouteSettings
from moai.errors import GeocodingError
from moai.models.common import Location, utc_now
from moai.models.order import Order
from moai.models.route import PRIORITY_WEIGHT, OptimizedRoute, PriorityTier, RoutePoint
from moai.services.geocoding import Geocoder
from moai.utils.logging import get_logger

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def calculate_priority(
    total: int,
    age_minutes: float,
    settings: RouteSettings | None = None,
) -> PriorityTier:
    """Tier an order by value and waiting time."""
    settings = settings or RouteSettings()

    if total > settings.high_value_threshold or age_minutes > settings.high_age_minutes:
        return PriorityTier.HIGH
    if total > settings.medium_value_threshold or age_minutes > settings.medium_age_minutes:
        return PriorityTier.MEDIUM
    return PriorityTier.LOW


def sequence_points(
    points: list[RoutePoint],
    start: Location,
    settings: RouteSettings | None = None,
) -> list[RoutePoint]:
    """Visiting order for ``points`` from ``start``.

    Always returns a permutation of the input. Stops without coordinates
    cannot be placed geographically and go last.
    """
    settings = settings or RouteSettings()
    remaining = list(points)

    if settings.prioritize_high_value:
        remaining.sort(key=lambda p: (-PRIORITY_WEIGHT[p.priority], -p.order_value))

    located = [p for p in remaining if p.has_coordinates]
    unlocated = [p for p in remaining if not p.has_coordinates]

    ordered: list[RoutePoint] = []
    current_lat, current_lng = start.lat, start.lng

    while located:
        nearest_index = 0
        nearest_distance = math.inf

        for index, point in enumerate(located):
            distance = haversine_km(current_lat, current_lng, point.lat, point.lng)
            adjusted = distance * settings.priority_multipliers[point.priority.value]
            if adjusted < nearest_distance:
                nearest_distance = adjusted
                nearest_index = index

        nearest = located.pop(nearest_index)
        ordered.append(nearest)
        current_lat, current_lng = nearest.lat, nearest.lng

    return ordered + unlocated


def route_metrics(
    points: Iterable[RoutePoint],
    start: Location,
    settings: RouteSettings | None = None,
) -> tuple[float, float]:
    """Unrounded (distance km, time minutes) for visiting ``points`` in order."""
    settings = settings or RouteSettings()
    total_distance = 0.0
    total_time = 0.0
    current_lat, current_lng = start.lat, start.lng

    for point in points:
        if not point.has_coordinates:
            continue
        distance = haversine_km(current_lat, current_lng, point.lat, point.lng)
        total_distance += distance
        total_time += (distance / settings.average_speed_kmh) * 60 + point.estimated_delivery_time
        current_lat, current_lng = point.lat, point.lng

    return total_distance, total_time


def route_efficiency(points: list[RoutePoint], total_distance: float, total_time: float) -> int:
    """Heuristic 0-100 score; penalties for long legs, late urgent stops and long routes."""
    if not points:
        return 100

    score = 100
    avg_distance = total_distance / len(points)

    if avg_distance > 5:
        score -= 20
    elif avg_distance > 3:
        score -= 10

    first_high = next(
        (i for i, p in enumerate(points) if p.priority == PriorityTier.HIGH), None
    )
    if first_high is not None and first_high / len(points) > 0.3:
        score -= 15

    if total_time > 120:
        score -= 25
    elif total_time > 90:
        score -= 15

    return max(0, score)


def navigation_url(points: list[RoutePoint], include_waypoints: bool = True) -> str:
    """Google Maps directions link from the current location through the stops."""
    if not points:
        return ""

    origin = "current+location"
    destination = quote(points[-1].address, safe="")

    if include_waypoints and len(points) > 2:
        waypoints = "/".join(quote(p.address, safe="") for p in points[:-1])
        return f"https://www.google.com/maps/dir/{origin}/{waypoints}/{destination}"

    return f"https://www.google.com/maps/dir/{origin}/{destination}"


class RouteSequencer:
    """Builds route points from orders and sequences them for a driver."""

    def __init__(
        self,
        settings: RouteSettings,
        geocoder: Geocoder | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.geocoder = geocoder
        self.clock = clock

    def estimate_service_time(self, order: Order) -> int:
        return self.settings.base_service_minutes + order.dish_count * self.settings.minutes_per_dish

    async def _coordinates_for(self, order: Order) -> Location | None:
        if order.delivery_info.coordinates is not None:
            return order.delivery_info.coordinates

        if self.geocoder is None:
            return None

        try:
            return await self.geocoder.geocode(order.delivery_info.address)
        except GeocodingError as e:
            logger.error("geocode_failed", order_id=order.id, error=str(e))
            return None

    async def build_route_points(self, orders: Iterable[Order]) -> list[RoutePoint]:
        now = self.clock()
        points = []

        for order in orders:
            coordinates = await self._coordinates_for(order)
            age_minutes = (now - order.created_at).total_seconds() / 60

            points.append(RoutePoint(
                id=f"order-{order.id}",
                order_id=order.id,
                customer_name=order.customer_name,
                address=order.delivery_info.address,
                lat=coordinates.lat if coordinates else None,
                lng=coordinates.lng if coordinates else None,
                priority=calculate_priority(order.total, age_minutes, self.settings),
                order_value=order.total,
                estimated_delivery_time=self.estimate_service_time(order),
            ))

        return points

    async def optimize(self, orders: list[Order], driver_location: Location) -> OptimizedRoute:
        """Sequence ``orders`` from ``driver_location`` and compute route metrics."""
        points = await self.build_route_points(orders)
        ordered = sequence_points(points, driver_location, self.settings)

        total_distance, total_time = route_metrics(ordered, driver_location, self.settings)
        fuel_cost = (
            total_distance / self.settings.fuel_efficiency_km_per_liter
        ) * self.settings.fuel_price_per_liter

        route = OptimizedRoute(
            points=ordered,
            total_distance=round(total_distance, 1),
            total_time=round(total_time),
            estimated_fuel_cost=round(fuel_cost),
            efficiency=route_efficiency(ordered, total_distance, total_time),
        )

        logger.info(
            "route_optimized",
            stops=len(ordered),
            unlocated=sum(1 for p in ordered if not p.has_coordinates),
            total_distance_km=route.total_distance,
            total_time_min=route.total_time,
            efficiency=route.efficiency,
        )
        return route

    def estimated_arrival_times(
        self, route: OptimizedRoute, now: datetime | None = None
    ) -> dict[str, datetime]:
        """Arrival estimate per order id, assuming a fixed hop time between stops."""
        now = now or self.clock()
        arrivals = {}
        cumulative = 0

        for point in route.points:
            cumulative += self.settings.minutes_between_stops
            arrivals[point.order_id] = now + timedelta(minutes=cumulative)
            cumulative += point.estimated_delivery_time

        return arrivals
