"""Tests for the typed document store and change streams."""

import json

import pytest

from moai.errors import DocumentNotFoundError, DocumentValidationError
from moai.models.driver import Driver
from moai.models.order import Order, OrderStatus
from moai.state.documents import DRIVERS, ORDERS, DocumentStore, deep_merge
from moai.state.manager import StateManager
from moai.state.streams import ChangeKind


def test_deep_merge() -> None:
    base = {"a": 1, "nested": {"x": 1, "y": 2}}
    merged = deep_merge(base, {"nested": {"y": 3}, "b": 2})

    assert merged == {"a": 1, "b": 2, "nested": {"x": 1, "y": 3}}
    assert base["nested"]["y"] == 2


@pytest.mark.asyncio
async def test_set_and_get_typed(store: DocumentStore, sample_order: Order) -> None:
    """Test that documents come back as their model."""
    await store.set(ORDERS, sample_order.id, sample_order)

    order = await store.get(Order, ORDERS, sample_order.id)

    assert isinstance(order, Order)
    assert order == sample_order
    assert await store.get(Order, ORDERS, "missing") is None

    with pytest.raises(DocumentNotFoundError):
        await store.require(Order, ORDERS, "missing")


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(
    store: DocumentStore, state_manager: StateManager
) -> None:
    """Test that a stored payload not matching its model raises."""
    await state_manager.set(f"{ORDERS}:broken", {"id": "broken", "status": "teleported"})

    with pytest.raises(DocumentValidationError) as exc_info:
        await store.get(Order, ORDERS, "broken")

    assert exc_info.value.document_id == "broken"


@pytest.mark.asyncio
async def test_merge(store: DocumentStore, sample_driver: Driver) -> None:
    with pytest.raises(DocumentNotFoundError):
        await store.merge(Driver, DRIVERS, sample_driver.id, {"is_online": False})

    await store.set(DRIVERS, sample_driver.id, sample_driver)
    driver = await store.merge(Driver, DRIVERS, sample_driver.id, {"is_available": False})

    assert not driver.is_available
    assert driver.display_name == sample_driver.display_name

    with pytest.raises(DocumentValidationError):
        await store.merge(Driver, DRIVERS, sample_driver.id, {"rating": 9})


@pytest.mark.asyncio
async def test_query_filters(store: DocumentStore, sample_order: Order) -> None:
    ready = sample_order.model_copy(update={"id": "order-ready", "status": OrderStatus.READY})
    await store.set(ORDERS, sample_order.id, sample_order)
    await store.set(ORDERS, ready.id, ready)

    results = await store.query(Order, ORDERS, status="ready")
    assert [o.id for o in results] == ["order-ready"]

    await store.delete(ORDERS, ready.id)
    assert await store.query(Order, ORDERS, status="ready") == []
    assert len(await store.query(Order, ORDERS)) == 1


@pytest.mark.asyncio
async def test_watch_collection(store: DocumentStore, sample_order: Order) -> None:
    """Test snapshots, filtered changes and deletes on a collection stream."""
    await store.set(ORDERS, sample_order.id, sample_order)
    stream = await store.watch_collection(Order, ORDERS, customer_id=sample_order.customer_id)

    snapshot = await stream.get(timeout=1)
    assert snapshot.kind == ChangeKind.SNAPSHOT
    assert snapshot.document_id == sample_order.id

    other = sample_order.model_copy(update={"id": "other", "customer_id": "customer-2"})
    await store.set(ORDERS, other.id, other)
    await store.merge(Order, ORDERS, sample_order.id, {"status": "accepted"})

    change = await stream.get(timeout=1)
    assert change.kind == ChangeKind.SET
    assert change.document.status == OrderStatus.ACCEPTED

    await store.delete(ORDERS, sample_order.id)
    deleted = await stream.get(timeout=1)
    assert deleted.kind == ChangeKind.DELETE
    assert deleted.document is None

    async with stream:
        pass
    assert store.broker.subscriber_count == 0


@pytest.mark.asyncio
async def test_changes_published_to_redis(
    store: DocumentStore, state_manager: StateManager, sample_driver: Driver
) -> None:
    pubsub = state_manager.redis_client.pubsub()
    await pubsub.subscribe(f"changes:{DRIVERS}:{sample_driver.id}")
    await pubsub.get_message(timeout=1)

    await store.set(DRIVERS, sample_driver.id, sample_driver)

    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
    await pubsub.aclose()

    event = json.loads(message["data"])
    assert event["kind"] == "set"
    assert event["data"]["display_name"] == sample_driver.display_name
