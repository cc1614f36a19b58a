"""Tests for delivery tracking documents."""

from datetime import datetime

import pytest

from moai.models.common import Location
from moai.models.driver import DeliveryStep
from moai.services.tracking import DeliveryTrackingService
from moai.state.documents import DocumentStore
from moai.state.streams import ChangeKind


@pytest.fixture
def tracking(store: DocumentStore, now: datetime) -> DeliveryTrackingService:
    return DeliveryTrackingService(store, clock=lambda: now)


@pytest.mark.asyncio
async def test_create_and_read(tracking: DeliveryTrackingService, now: datetime) -> None:
    """Test that a tracking document is created with its first position."""
    created = await tracking.create_tracking(
        "order-1",
        "driver-1",
        "Juan Pérez",
        location=Location(lat=-33.44, lng=-70.65),
        estimated_pickup_time="12:10",
    )

    assert created
    document = await tracking.get("order-1")
    assert document.driver_name == "Juan Pérez"
    assert document.current_step == DeliveryStep.HEADING_TO_PICKUP
    assert document.current_location.lat == -33.44
    assert document.current_location.timestamp == now
    assert document.estimated_pickup_time == "12:10"
    assert document.last_updated == now


@pytest.mark.asyncio
async def test_updates_merge_into_document(tracking: DeliveryTrackingService) -> None:
    await tracking.create_tracking("order-1", "driver-1", "Juan Pérez")

    assert await tracking.update_location("order-1", Location(lat=-33.45, lng=-70.66))
    assert await tracking.update_eta("order-1", delivery="12:40", total="25 min")
    assert await tracking.update_step("order-1", DeliveryStep.AT_PICKUP)

    document = await tracking.get("order-1")
    assert document.current_location.lng == -70.66
    assert document.estimated_delivery_time == "12:40"
    assert document.total_estimated_time == "25 min"
    assert document.estimated_pickup_time == ""
    assert document.current_step == DeliveryStep.AT_PICKUP
    assert document.driver_id == "driver-1"


@pytest.mark.asyncio
async def test_complete_delivery(tracking: DeliveryTrackingService) -> None:
    await tracking.create_tracking("order-1", "driver-1", "Juan Pérez")

    assert await tracking.complete_delivery("order-1")
    assert (await tracking.get("order-1")).current_step == DeliveryStep.DELIVERED


@pytest.mark.asyncio
async def test_write_to_missing_document_reports_failure(
    tracking: DeliveryTrackingService,
) -> None:
    """Test that updates without a tracking document return False instead of raising."""
    assert not await tracking.update_location("missing", Location(lat=0, lng=0))
    assert await tracking.get("missing") is None


@pytest.mark.asyncio
async def test_subscribe_streams_changes(tracking: DeliveryTrackingService) -> None:
    """Test that subscribers get the current state then every write."""
    await tracking.create_tracking("order-1", "driver-1", "Juan Pérez")
    stream = await tracking.subscribe("order-1")

    initial = await stream.get(timeout=1)
    assert initial.kind == ChangeKind.SNAPSHOT
    assert initial.document.current_step == DeliveryStep.HEADING_TO_PICKUP

    await tracking.update_step("order-1", DeliveryStep.HEADING_TO_DELIVERY)
    change = await stream.get(timeout=1)
    assert change.kind == ChangeKind.SET
    assert change.document.current_step == DeliveryStep.HEADING_TO_DELIVERY

    stream.close()
    with pytest.raises(StopAsyncIteration):
        await stream.get(timeout=1)
