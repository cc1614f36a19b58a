"""Change streams for real-time document subscriptions.

Every write through the document store produces a ``ChangeEvent``. The
``ChangeBroker`` fans each event out to the ``ChangeStream`` objects
subscribed to that collection (optionally narrowed to one document). A
stream is an async iterator; closing it unregisters it from the broker and
ends iteration for the consumer.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Generic, TypeVar

from pydantic import BaseModel, Field

from moai.models.common import utc_now
from moai.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ChangeKind(str, Enum):
    SNAPSHOT = "snapshot"
    SET = "set"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """Raw change emitted by the store."""

    collection: str
    document_id: str
    kind: ChangeKind
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utc_now)


_CLOSED = object()


class ChangeStream(Generic[T]):
    """Cancellable async iterator of typed change events."""

    def __init__(
        self,
        broker: "ChangeBroker",
        collection: str,
        document_id: str | None = None,
        transform: Callable[[ChangeEvent], T | None] | None = None,
        maxsize: int = 0,
    ):
        self.broker = broker
        self.collection = collection
        self.document_id = document_id
        self._transform = transform
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if event.collection != self.collection:
            return False
        return self.document_id is None or event.document_id == self.document_id

    def push(self, event: ChangeEvent) -> None:
        """Deliver an event to this stream. Events the transform rejects are dropped."""
        if self.closed:
            return

        item = self._transform(event) if self._transform else event
        if item is None:
            return

        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(
                "change_stream_overflow",
                collection=self.collection,
                document_id=self.document_id,
            )

    def close(self) -> None:
        """Stop delivery and wake any pending consumer."""
        if self.closed:
            return
        self.closed = True
        self.broker.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    async def get(self, timeout: float | None = None) -> T:
        """Wait for the next event. Raises StopAsyncIteration once closed."""
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.get()

    async def __aenter__(self) -> "ChangeStream[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class ChangeBroker:
    """In-process fan-out of store changes to subscribed streams."""

    def __init__(self) -> None:
        self._streams: set[ChangeStream[Any]] = set()

    def subscribe(
        self,
        collection: str,
        document_id: str | None = None,
        transform: Callable[[ChangeEvent], Any] | None = None,
    ) -> ChangeStream[Any]:
        stream: ChangeStream[Any] = ChangeStream(self, collection, document_id, transform)
        self._streams.add(stream)
        logger.debug("stream_subscribed", collection=collection, document_id=document_id)
        return stream

    def unsubscribe(self, stream: ChangeStream[Any]) -> None:
        self._streams.discard(stream)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to every matching stream; returns the number reached."""
        delivered = 0
        for stream in list(self._streams):
            if stream.matches(event):
                stream.push(event)
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._streams)

    def close_all(self) -> None:
        for stream in list(self._streams):
            stream.close()
