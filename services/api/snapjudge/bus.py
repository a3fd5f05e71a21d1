"""
In-process change notification bus.

Stores publish a ChangeEvent after every successful mutation; observers
subscribe per table with an optional record filter. Delivery is
at-least-once fan-out to per-subscriber queues. Nothing is promised about
ordering across distinct records, so handlers must be idempotent.
"""
import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from .models import ChangeEvent, EventType, TableName

logger = logging.getLogger(__name__)

RecordFilter = Callable[[dict[str, Any]], bool]


def field_equals(field: str, value: Any) -> RecordFilter:
    """Filter matching records whose `field` equals `value` (e.g. lobby_id)."""
    return lambda record: record.get(field) == value


class Subscription:
    """
    A live subscription. Iterate it to receive events; close it to stop.

    Usage:
        async with bus.subscribe("lobbies", field_equals("lobby_id", lid)) as sub:
            async for event in sub:
                ...
    """

    def __init__(
        self,
        bus: "ChangeBus",
        table: TableName,
        match: Optional[RecordFilter],
        event_types: Optional[frozenset[str]],
    ):
        self._bus = bus
        self.table = table
        self._match = match
        self._event_types = event_types
        self._queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue()
        self.closed = False

    def wants(self, event: ChangeEvent) -> bool:
        if self.closed or event.table != self.table:
            return False
        if self._event_types is not None and event.event_type not in self._event_types:
            return False
        if self._match is not None and not self._match(event.record):
            return False
        return True

    def deliver(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._remove(self)
            # Wake up any consumer blocked on the queue
            self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeBus:
    """Fan-out of record change events to subscribers."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        table: TableName,
        match: Optional[RecordFilter] = None,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        """Subscribe to changes of one table, optionally filtered."""
        sub = Subscription(
            self,
            table,
            match,
            frozenset(event_types) if event_types is not None else None,
        )
        self._subscriptions.append(sub)
        return sub

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscriber. Returns the fan-out count."""
        delivered = 0
        for sub in list(self._subscriptions):
            try:
                matched = sub.wants(event)
            except Exception:
                logger.exception("Subscription filter failed for %s event", event.table)
                continue
            if matched:
                sub.deliver(event)
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def close(self) -> None:
        """Close every open subscription."""
        for sub in list(self._subscriptions):
            sub.close()
