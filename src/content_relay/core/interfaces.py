"""Protocol interfaces for the content relay.

All module boundaries are defined here as Protocol classes.
Implementations can be swapped (memory / redis / sql) without changing
callers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol, TypeVar, runtime_checkable

from .events import EventEnvelope, OutboxEntry
from .models import CatalogContent, ContentRecord, ContentView, WatchRecord

# Async handler invoked once per delivered envelope.
EnvelopeHandler = Callable[[EventEnvelope], Awaitable[None]]

R = TypeVar("R")

# Builds the (topic, envelope) to stage for a freshly saved record, or None
# to save without an outbox entry.  Called by a store inside the write
# transaction, after ids are assigned.
EventStager = Callable[[R], tuple[str, EventEnvelope] | None]


# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------

@runtime_checkable
class IEventBus(Protocol):
    """Ordered-per-key, at-least-once publish/subscribe bus."""

    async def publish(self, topic: str, envelope: EventEnvelope) -> None: ...

    async def subscribe(
        self,
        topic: str,
        group: str,
        handler: EnvelopeHandler,
    ) -> None: ...

    async def start(self) -> None: ...
    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@runtime_checkable
class IViewStore(Protocol):
    """Consumer-owned projection, one current view per ``content_id``."""

    async def upsert(self, view: ContentView) -> None:
        """Create the view or overwrite the existing one for its id."""
        ...

    async def get(self, content_id: int) -> ContentView | None: ...

    async def recent(self, limit: int = 10) -> list[ContentView]:
        """Most recently viewed first."""
        ...

    async def list_all(self) -> list[ContentView]: ...


@runtime_checkable
class IWatchRecordStore(Protocol):
    async def save(
        self,
        record: WatchRecord,
        stage: EventStager[WatchRecord] | None = None,
    ) -> WatchRecord: ...

    async def by_visitor(self, visitor_id: str) -> list[WatchRecord]:
        """Records for *visitor_id*, newest first."""
        ...


@runtime_checkable
class IContentStore(Protocol):
    async def save(
        self,
        record: ContentRecord,
        stage: EventStager[ContentRecord] | None = None,
    ) -> ContentRecord: ...

    async def get(self, content_id: int) -> ContentRecord | None: ...

    async def list_all(self) -> list[ContentRecord]: ...


@runtime_checkable
class IOutboxStore(Protocol):
    async def pending(self, limit: int = 100) -> list[OutboxEntry]:
        """Undispatched entries in insertion order."""
        ...

    async def mark_dispatched(self, entry_id: int) -> None: ...

    async def record_failure(self, entry_id: int, error: str) -> None: ...


# ---------------------------------------------------------------------------
# Remote collaborators
# ---------------------------------------------------------------------------

@runtime_checkable
class IContentLookup(Protocol):
    """Batch enrichment source for content descriptions."""

    async def fetch_batch(self, ids: Iterable[int]) -> dict[int, CatalogContent]:
        """One round trip; unresolvable ids are simply absent.  Never raises."""
        ...
