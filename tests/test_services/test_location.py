"""Tests for throttled location publishing."""

import asyncio
from datetime import datetime

import pytest

from moai.config import TrackingSettings
from moai.errors import GeolocationError
from moai.models.driver import DeliveryTracking, Driver
from moai.services.location import (
    DriverStatusWatcher,
    LocationPublisher,
    PositionSample,
    QueuePositionSource,
    Throttle,
    TrackingProfile,
    TrackingSession,
)
from moai.services.tracking import DeliveryTrackingService
from moai.state.documents import DELIVERY_TRACKING, DRIVERS, DocumentStore


class SteppedClock:
    """Monotonic clock moved by hand."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def clock() -> SteppedClock:
    return SteppedClock()


@pytest.fixture
def publisher(store: DocumentStore, clock: SteppedClock, now: datetime) -> LocationPublisher:
    tracking = DeliveryTrackingService(store, clock=lambda: now)
    return LocationPublisher(store, tracking, TrackingSettings(), clock=clock)


async def wait_for(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def test_throttle_interval() -> None:
    """Test that the throttle opens only after more than the interval."""
    throttle = Throttle(interval=30)
    assert throttle.ready(0)

    throttle.mark(0)
    assert not throttle.ready(10)
    assert not throttle.ready(30)
    assert throttle.ready(30.5)


@pytest.mark.asyncio
async def test_idle_samples_are_throttled(
    store: DocumentStore,
    publisher: LocationPublisher,
    clock: SteppedClock,
    sample_driver: Driver,
) -> None:
    """Test that an idle driver writes at most once per 30 seconds."""
    await store.set(DRIVERS, sample_driver.id, sample_driver)
    session = TrackingSession(
        driver_id=sample_driver.id,
        profile=TrackingProfile.IDLE,
        source=QueuePositionSource(),
        throttle=Throttle(30),
    )

    assert await publisher.handle_sample(session, PositionSample(lat=-33.44, lng=-70.65, speed=8.5))

    clock.value += 10
    assert not await publisher.handle_sample(session, PositionSample(lat=-33.45, lng=-70.66))

    clock.value += 21
    assert await publisher.handle_sample(session, PositionSample(lat=-33.46, lng=-70.67))

    assert session.writes == 2
    driver = await store.require(Driver, DRIVERS, sample_driver.id)
    assert driver.current_location.coordinates.lat == -33.46
    assert driver.last_location_update is not None


@pytest.mark.asyncio
async def test_failed_write_does_not_advance_throttle(
    publisher: LocationPublisher, clock: SteppedClock
) -> None:
    """Test that a sample for an unknown driver is not counted."""
    session = TrackingSession(
        driver_id="ghost",
        profile=TrackingProfile.IDLE,
        source=QueuePositionSource(),
        throttle=Throttle(30),
    )

    assert not await publisher.handle_sample(session, PositionSample(lat=-33.44, lng=-70.65))
    assert session.throttle.last is None
    assert session.writes == 0


@pytest.mark.asyncio
async def test_active_samples_update_tracking(
    store: DocumentStore,
    publisher: LocationPublisher,
    clock: SteppedClock,
) -> None:
    """Test that an active delivery writes to its tracking document every 10 seconds."""
    await publisher.tracking.create_tracking("order-1", "driver-1", "Juan Pérez")
    session = TrackingSession(
        driver_id="driver-1",
        profile=TrackingProfile.ACTIVE,
        source=QueuePositionSource(),
        throttle=Throttle(10),
        order_id="order-1",
    )

    assert await publisher.handle_sample(session, PositionSample(lat=-33.44, lng=-70.65))
    clock.value += 5
    assert not await publisher.handle_sample(session, PositionSample(lat=-33.45, lng=-70.65))
    clock.value += 6
    assert await publisher.handle_sample(session, PositionSample(lat=-33.46, lng=-70.65))

    tracking = await store.require(DeliveryTracking, DELIVERY_TRACKING, "order-1")
    assert tracking.current_location.lat == -33.46


@pytest.mark.asyncio
async def test_session_task_skips_geolocation_errors(
    store: DocumentStore,
    publisher: LocationPublisher,
    sample_driver: Driver,
) -> None:
    """Test that a failed fix is logged and the next sample still lands."""
    await store.set(DRIVERS, sample_driver.id, sample_driver)
    source = QueuePositionSource()

    session = await publisher.start_idle(sample_driver.id, source)
    source.push_error(GeolocationError("Timeout expired"))
    source.push(PositionSample(lat=-33.42, lng=-70.61))

    await wait_for(lambda: session.writes == 1)
    await publisher.stop(sample_driver.id)

    assert source.pending() == 0
    assert publisher.active_trackings() == []


@pytest.mark.asyncio
async def test_queue_source_is_reusable_after_close() -> None:
    """Test that closing drops queued samples but keeps the source usable."""
    source = QueuePositionSource()
    source.push(PositionSample(lat=-33.42, lng=-70.61))
    source.push_error(GeolocationError("Position unavailable"))

    await source.close()
    assert source.pending() == 0

    source.push(PositionSample(lat=-33.43, lng=-70.62))
    sample = await source.next_position()
    assert sample.lat == -33.43


@pytest.mark.asyncio
async def test_starting_active_replaces_idle(publisher: LocationPublisher) -> None:
    """Test that a driver has one tracking session at a time."""
    source = QueuePositionSource()
    await publisher.start_idle("driver-1", source)
    first = publisher.sessions["driver-1"]

    await publisher.start_active("driver-1", "order-1", source)

    assert publisher.profile_for("driver-1") == TrackingProfile.ACTIVE
    assert publisher.sessions["driver-1"].order_id == "order-1"
    assert first.task.cancelled()
    assert publisher.sessions["driver-1"].source is source

    await publisher.stop_all()
    assert publisher.profile_for("driver-1") is None


@pytest.mark.asyncio
async def test_watcher_follows_availability(
    store: DocumentStore,
    publisher: LocationPublisher,
    sample_driver: Driver,
) -> None:
    """Test that idle tracking runs only while the driver is online and available."""
    sources: dict[str, QueuePositionSource] = {}
    watcher = DriverStatusWatcher(
        store, publisher, lambda driver_id: sources.setdefault(driver_id, QueuePositionSource())
    )

    await watcher.apply(sample_driver)
    assert publisher.profile_for(sample_driver.id) == TrackingProfile.IDLE

    sample_driver.is_available = False
    await watcher.apply(sample_driver)
    assert publisher.profile_for(sample_driver.id) is None

    await publisher.start_active(sample_driver.id, "order-1", QueuePositionSource())
    await watcher.apply(sample_driver)
    assert publisher.profile_for(sample_driver.id) == TrackingProfile.ACTIVE

    await publisher.stop_all()


@pytest.mark.asyncio
async def test_watcher_reacts_to_driver_document(
    store: DocumentStore,
    publisher: LocationPublisher,
    sample_driver: Driver,
) -> None:
    """Test that going online through the store starts idle tracking."""
    sample_driver.is_online = False
    await store.set(DRIVERS, sample_driver.id, sample_driver)
    watcher = DriverStatusWatcher(store, publisher, lambda driver_id: QueuePositionSource())

    await watcher.watch(sample_driver.id)
    await asyncio.sleep(0.01)
    assert publisher.profile_for(sample_driver.id) is None

    await store.merge(Driver, DRIVERS, sample_driver.id, {"is_online": True})
    await wait_for(lambda: publisher.profile_for(sample_driver.id) == TrackingProfile.IDLE)

    await store.merge(Driver, DRIVERS, sample_driver.id, {"is_online": False})
    await wait_for(lambda: publisher.profile_for(sample_driver.id) is None)

    await watcher.close()
    await publisher.stop_all()
