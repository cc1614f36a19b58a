"""Throttled publishing of driver positions.

A driver is tracked under one of two profiles. Idle drivers (online and
available, no order) write to their driver document every 30 seconds at
most; drivers on an active delivery write to the order's tracking document
every 10 seconds at most. Samples arriving in between are dropped.
"""

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from moai.config import TrackingSettings
from moai.errors import GeolocationError, MoaiError
from moai.models.common import Location, utc_now
from moai.models.driver import Driver
from moai.services.tracking import DeliveryTrackingService
from moai.state.documents import DRIVERS, DocumentStore
from moai.state.streams import ChangeStream
from moai.utils.logging import get_logger

logger = get_logger(__name__)


class PositionSample(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    speed: float | None = None
    heading: float | None = None


class PositionSource(Protocol):
    """Stream of position samples for one driver."""

    async def next_position(self) -> PositionSample:
        """Wait for the next sample; raises GeolocationError on a failed fix."""
        ...

    async def close(self) -> None:
        ...


class QueuePositionSource:
    """Position source fed by pushing samples, e.g. from a driver's app socket.

    The source lives as long as the socket and is handed from one tracking
    session to the next; closing it only drops samples not yet consumed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PositionSample | GeolocationError] = asyncio.Queue()

    def push(self, sample: PositionSample) -> None:
        self._queue.put_nowait(sample)

    def push_error(self, error: GeolocationError) -> None:
        self._queue.put_nowait(error)

    async def next_position(self) -> PositionSample:
        item = await self._queue.get()
        if isinstance(item, GeolocationError):
            raise item
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    async def close(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()


class TrackingProfile(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class Throttle:
    """Allows an action only once more than ``interval`` seconds have passed."""

    interval: float
    last: float | None = None

    def ready(self, now: float) -> bool:
        return self.last is None or now - self.last > self.interval

    def mark(self, now: float) -> None:
        self.last = now


@dataclass
class TrackingSession:
    driver_id: str
    profile: TrackingProfile
    source: PositionSource
    throttle: Throttle
    order_id: str | None = None
    writes: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)


class LocationPublisher:
    """Owns the tracking session of every driver in this process."""

    def __init__(
        self,
        store: DocumentStore,
        tracking: DeliveryTrackingService,
        settings: TrackingSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.tracking = tracking
        self.settings = settings
        self.clock = clock
        self.sessions: dict[str, TrackingSession] = {}

    async def start_idle(self, driver_id: str, source: PositionSource) -> TrackingSession:
        """Track an idle driver, replacing any tracking already running for them."""
        return await self._start(TrackingSession(
            driver_id=driver_id,
            profile=TrackingProfile.IDLE,
            source=source,
            throttle=Throttle(self.settings.idle_interval_seconds),
        ))

    async def start_active(
        self, driver_id: str, order_id: str, source: PositionSource
    ) -> TrackingSession:
        """Track a driver on a delivery, replacing any tracking already running for them."""
        return await self._start(TrackingSession(
            driver_id=driver_id,
            profile=TrackingProfile.ACTIVE,
            source=source,
            throttle=Throttle(self.settings.active_interval_seconds),
            order_id=order_id,
        ))

    async def _start(self, session: TrackingSession) -> TrackingSession:
        await self.stop(session.driver_id)

        self.sessions[session.driver_id] = session
        session.task = asyncio.create_task(self._run(session))

        logger.info(
            "location_tracking_started",
            driver_id=session.driver_id,
            profile=session.profile.value,
            order_id=session.order_id,
        )
        return session

    async def stop(self, driver_id: str) -> None:
        session = self.sessions.pop(driver_id, None)
        if session is None:
            return

        if session.task is not None:
            session.task.cancel()
            with suppress(asyncio.CancelledError):
                await session.task
        await session.source.close()

        logger.info(
            "location_tracking_stopped",
            driver_id=driver_id,
            profile=session.profile.value,
            writes=session.writes,
        )

    async def stop_all(self) -> None:
        for driver_id in list(self.sessions):
            await self.stop(driver_id)

    def profile_for(self, driver_id: str) -> TrackingProfile | None:
        session = self.sessions.get(driver_id)
        return session.profile if session else None

    def active_trackings(self) -> list[str]:
        return list(self.sessions)

    async def _run(self, session: TrackingSession) -> None:
        while True:
            try:
                sample = await session.source.next_position()
            except GeolocationError as e:
                logger.warning(
                    "geolocation_failed", driver_id=session.driver_id, error=str(e)
                )
                continue

            await self.handle_sample(session, sample)

    async def handle_sample(self, session: TrackingSession, sample: PositionSample) -> bool:
        """Write ``sample`` if the session's throttle allows it.

        The throttle only advances after a successful write.
        """
        now = self.clock()
        if not session.throttle.ready(now):
            return False

        if session.profile == TrackingProfile.IDLE:
            written = await self._write_driver_location(session.driver_id, sample)
        else:
            written = await self.tracking.update_location(
                session.order_id, Location(lat=sample.lat, lng=sample.lng)
            )

        if written:
            session.throttle.mark(now)
            session.writes += 1
            logger.debug(
                "location_published",
                driver_id=session.driver_id,
                profile=session.profile.value,
            )
        return written

    async def _write_driver_location(self, driver_id: str, sample: PositionSample) -> bool:
        timestamp = utc_now().isoformat()
        current_location: dict = {
            "coordinates": {"lat": sample.lat, "lng": sample.lng, "timestamp": timestamp},
            "last_updated": timestamp,
        }
        if sample.speed:
            current_location["speed"] = sample.speed
        if sample.heading:
            current_location["heading"] = sample.heading

        try:
            await self.store.merge(
                Driver,
                DRIVERS,
                driver_id,
                {"current_location": current_location, "last_location_update": timestamp},
            )
        except (MoaiError, RedisError) as e:
            logger.error("idle_location_write_failed", driver_id=driver_id, error=str(e))
            return False
        return True


class DriverStatusWatcher:
    """Starts idle tracking while a driver is online and available."""

    def __init__(
        self,
        store: DocumentStore,
        publisher: LocationPublisher,
        source_factory: Callable[[str], PositionSource],
    ):
        self.store = store
        self.publisher = publisher
        self.source_factory = source_factory
        self._watches: dict[str, tuple[ChangeStream, asyncio.Task]] = {}

    async def watch(self, driver_id: str) -> None:
        await self.unwatch(driver_id)

        stream = await self.store.watch_document(Driver, DRIVERS, driver_id)
        task = asyncio.create_task(self._consume(driver_id, stream))
        self._watches[driver_id] = (stream, task)

    async def unwatch(self, driver_id: str) -> None:
        entry = self._watches.pop(driver_id, None)
        if entry is None:
            return

        stream, task = entry
        stream.close()
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        for driver_id in list(self._watches):
            await self.unwatch(driver_id)

    async def _consume(self, driver_id: str, stream: ChangeStream) -> None:
        async for change in stream:
            if change.document is None:
                continue
            await self.apply(change.document)

    async def apply(self, driver: Driver) -> None:
        """Reconcile tracking with one driver snapshot."""
        profile = self.publisher.profile_for(driver.id)

        if driver.is_online and driver.is_available:
            if profile is None:
                await self.publisher.start_idle(driver.id, self.source_factory(driver.id))
        elif profile == TrackingProfile.IDLE:
            await self.publisher.stop(driver.id)
