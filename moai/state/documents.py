"""Typed document store on top of Redis.

Documents are JSON blobs stored at ``<collection>:<id>``. Each collection
keeps a set ``<collection>:index`` of its ids so simple equality queries can
scan it. Payloads are validated against their pydantic model on the way in
and on the way out; a stored payload that no longer matches its model raises
``DocumentValidationError`` instead of leaking a loosely-typed dict.
"""

import json
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from moai.errors import DocumentNotFoundError, DocumentValidationError
from moai.state.manager import StateManager
from moai.state.streams import ChangeBroker, ChangeEvent, ChangeKind, ChangeStream
from moai.utils.logging import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

ORDERS = "orders"
DRIVERS = "drivers"
COOKS = "cooks"
DELIVERY_TRACKING = "delivery_tracking"
NOTIFICATION_PREFERENCES = "notification_preferences"


@dataclass
class DocumentChange(Generic[M]):
    """A validated change delivered to subscribers."""

    kind: ChangeKind
    document_id: str
    document: M | None


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Merge nested dicts; values in ``updates`` win."""
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _matches(data: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(data.get(field) == value for field, value in filters.items())


class DocumentStore:
    """Typed reads, writes and subscriptions for store documents."""

    def __init__(self, state: StateManager, broker: ChangeBroker | None = None):
        self.state = state
        self.broker = broker or ChangeBroker()

    def _document_key(self, collection: str, document_id: str) -> str:
        return f"{collection}:{document_id}"

    def _index_key(self, collection: str) -> str:
        return f"{collection}:index"

    def _validate(
        self, model: type[M], collection: str, document_id: str, data: Any
    ) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DocumentValidationError(collection, document_id, str(e)) from e

    async def get(self, model: type[M], collection: str, document_id: str) -> M | None:
        """Read and validate a document; None when it does not exist."""
        data = await self.state.get(self._document_key(collection, document_id))

        if data is None:
            return None

        return self._validate(model, collection, document_id, data)

    async def require(self, model: type[M], collection: str, document_id: str) -> M:
        """Read a document that must exist."""
        document = await self.get(model, collection, document_id)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        return document

    async def set(self, collection: str, document_id: str, document: BaseModel) -> None:
        """Write a whole document."""
        data = document.model_dump(mode="json")

        await self.state.set(self._document_key(collection, document_id), data)
        await self.state.sadd(self._index_key(collection), document_id)
        await self._emit(ChangeEvent(
            collection=collection,
            document_id=document_id,
            kind=ChangeKind.SET,
            data=data,
        ))

    async def merge(
        self,
        model: type[M],
        collection: str,
        document_id: str,
        updates: dict[str, Any],
        create: bool = False,
    ) -> M:
        """Merge ``updates`` into a document and validate the result.

        Without ``create`` the document must already exist.
        """
        key = self._document_key(collection, document_id)
        current = await self.state.get(key)

        if current is None and not create:
            raise DocumentNotFoundError(collection, document_id)

        merged = deep_merge(current or {}, updates)
        document = self._validate(model, collection, document_id, merged)
        await self.set(collection, document_id, document)
        return document

    async def delete(self, collection: str, document_id: str) -> None:
        await self.state.delete(self._document_key(collection, document_id))
        await self.state.srem(self._index_key(collection), document_id)
        await self._emit(ChangeEvent(
            collection=collection,
            document_id=document_id,
            kind=ChangeKind.DELETE,
        ))

    async def query(
        self, model: type[M], collection: str, **filters: Any
    ) -> list[M]:
        """Documents whose top-level fields equal every given filter value."""
        results = []
        for document_id in sorted(await self.state.smembers(self._index_key(collection))):
            data = await self.state.get(self._document_key(collection, document_id))
            if data is None or not _matches(data, filters):
                continue
            results.append(self._validate(model, collection, document_id, data))
        return results

    async def watch_document(
        self,
        model: type[M],
        collection: str,
        document_id: str,
        include_initial: bool = True,
    ) -> ChangeStream[DocumentChange[M]]:
        """Subscribe to one document. The first event is its current state."""
        stream = self.broker.subscribe(
            collection, document_id, transform=self._transform(model, {})
        )

        if include_initial:
            data = await self.state.get(self._document_key(collection, document_id))
            stream.push(ChangeEvent(
                collection=collection,
                document_id=document_id,
                kind=ChangeKind.SNAPSHOT,
                data=data,
            ))

        return stream

    async def watch_collection(
        self,
        model: type[M],
        collection: str,
        include_initial: bool = True,
        **filters: Any,
    ) -> ChangeStream[DocumentChange[M]]:
        """Subscribe to every document of a collection matching ``filters``."""
        stream = self.broker.subscribe(
            collection, transform=self._transform(model, filters)
        )

        if include_initial:
            for document in await self.query(model, collection, **filters):
                data = document.model_dump(mode="json")
                stream.push(ChangeEvent(
                    collection=collection,
                    document_id=str(data.get("id") or data.get("order_id")),
                    kind=ChangeKind.SNAPSHOT,
                    data=data,
                ))

        return stream

    def _transform(self, model: type[M], filters: dict[str, Any]):
        def transform(event: ChangeEvent) -> DocumentChange[M] | None:
            if event.data is None:
                return DocumentChange(event.kind, event.document_id, None)

            if filters and not _matches(event.data, filters):
                return None

            try:
                document = self._validate(
                    model, event.collection, event.document_id, event.data
                )
            except DocumentValidationError as e:
                logger.error(
                    "change_dropped_invalid",
                    collection=event.collection,
                    document_id=event.document_id,
                    error=e.details,
                )
                return None

            return DocumentChange(event.kind, event.document_id, document)

        return transform

    async def _emit(self, event: ChangeEvent) -> None:
        self.broker.publish(event)
        await self.state.publish(
            f"changes:{event.collection}:{event.document_id}",
            json.dumps(event.model_dump(mode="json")),
        )
