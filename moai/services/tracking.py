"""Live delivery tracking documents."""

from datetime import datetime
from typing import Any, Callable

from redis.exceptions import RedisError

from moai.errors import MoaiError
from moai.models.common import Location, TimedLocation, utc_now
from moai.models.driver import DeliveryStep, DeliveryTracking
from moai.state.documents import DELIVERY_TRACKING, DocumentChange, DocumentStore
from moai.state.streams import ChangeStream
from moai.utils.logging import get_logger

logger = get_logger(__name__)


class DeliveryTrackingService:
    """Reads and writes the per-order tracking document.

    Write methods report failure by returning False after logging, so a lost
    location sample never interrupts the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock

    async def _write(
        self,
        operation: str,
        order_id: str,
        updates: dict[str, Any],
        create: bool = False,
    ) -> bool:
        updates["last_updated"] = self.clock().isoformat()
        try:
            await self.store.merge(
                DeliveryTracking, DELIVERY_TRACKING, order_id, updates, create=create
            )
        except (MoaiError, RedisError) as e:
            logger.error(
                "tracking_write_failed",
                operation=operation,
                order_id=order_id,
                error=str(e),
            )
            return False
        return True

    async def create_tracking(
        self,
        order_id: str,
        driver_id: str,
        driver_name: str,
        location: Location | None = None,
        estimated_pickup_time: str = "",
        estimated_delivery_time: str = "",
        total_estimated_time: str = "",
        step: DeliveryStep = DeliveryStep.HEADING_TO_PICKUP,
    ) -> bool:
        """Create or overwrite the tracking fields for an order."""
        updates: dict[str, Any] = {
            "order_id": order_id,
            "driver_id": driver_id,
            "driver_name": driver_name,
            "current_step": step.value,
            "estimated_pickup_time": estimated_pickup_time,
            "estimated_delivery_time": estimated_delivery_time,
            "total_estimated_time": total_estimated_time,
        }
        if location is not None:
            updates["current_location"] = self._timed(location)

        created = await self._write("create", order_id, updates, create=True)
        if created:
            logger.info("tracking_created", order_id=order_id, driver_id=driver_id)
        return created

    async def update_location(self, order_id: str, location: Location) -> bool:
        return await self._write(
            "location", order_id, {"current_location": self._timed(location)}
        )

    async def update_eta(
        self,
        order_id: str,
        pickup: str | None = None,
        delivery: str | None = None,
        total: str | None = None,
    ) -> bool:
        """Update whichever ETA strings are given."""
        updates: dict[str, Any] = {}
        if pickup:
            updates["estimated_pickup_time"] = pickup
        if delivery:
            updates["estimated_delivery_time"] = delivery
        if total:
            updates["total_estimated_time"] = total

        return await self._write("eta", order_id, updates)

    async def update_step(self, order_id: str, step: DeliveryStep) -> bool:
        return await self._write("step", order_id, {"current_step": step.value})

    async def complete_delivery(self, order_id: str) -> bool:
        completed = await self.update_step(order_id, DeliveryStep.DELIVERED)
        if completed:
            logger.info("delivery_completed", order_id=order_id)
        return completed

    async def get(self, order_id: str) -> DeliveryTracking | None:
        return await self.store.get(DeliveryTracking, DELIVERY_TRACKING, order_id)

    async def subscribe(
        self, order_id: str
    ) -> ChangeStream[DocumentChange[DeliveryTracking]]:
        """Stream of tracking changes for one order, starting with its current state."""
        return await self.store.watch_document(DeliveryTracking, DELIVERY_TRACKING, order_id)

    def _timed(self, location: Location) -> dict[str, Any]:
        return TimedLocation(
            lat=location.lat, lng=location.lng, timestamp=self.clock()
        ).model_dump(mode="json")
