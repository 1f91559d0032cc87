"""Shared fixtures for the content-relay test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from content_relay.bus.memory_bus import MemoryEventBus
from content_relay.clients.content_lookup import ContentLookupClient
from content_relay.core.enums import ContentType
from content_relay.core.events import ContentCreated, EventEnvelope
from content_relay.core.models import ContentRecord, WatchRecord
from content_relay.storage.memory import (
    MemoryContentStore,
    MemoryOutboxStore,
    MemoryViewStore,
    MemoryWatchRecordStore,
)

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_content_event(
    content_id: int = 1,
    title: str = "Inception",
    type: str = "MOVIE",
    minutes: int = 0,
) -> EventEnvelope:
    """Wrap a ``ContentCreated`` payload keyed by its id."""
    payload = ContentCreated(
        id=content_id,
        title=title,
        type=type,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )
    return EventEnvelope.wrap(payload, key=str(content_id))


def make_watch(
    visitor_id: str = "visitor-1",
    content_id: int = 1,
    watched_seconds: int = 120,
    minutes: int = 0,
) -> WatchRecord:
    return WatchRecord(
        visitor_id=visitor_id,
        content_id=content_id,
        watched_seconds=watched_seconds,
        watched_at=BASE_TIME + timedelta(minutes=minutes),
    )


def make_content(content_id: int | None = 1, title: str = "Inception") -> ContentRecord:
    return ContentRecord(
        id=content_id, title=title, type=ContentType.MOVIE, created_at=BASE_TIME,
    )


def catalog_row(content_id: int, title: str = "Inception", **overrides) -> dict:
    """One row as served by the catalog batch endpoint (camelCase)."""
    row = {
        "id": content_id,
        "title": title,
        "type": "MOVIE",
        "durationMinutes": 148,
        "genre": "Sci-Fi",
        "publishedAt": "2010-07-16T00:00:00Z",
    }
    row.update(overrides)
    return row


class CatalogTransport:
    """``httpx.MockTransport`` handler serving a fixed catalog.

    Records every request so tests can assert on round trips.
    """

    def __init__(self, rows: list[dict] | None = None, status_code: int = 200) -> None:
        self.rows = {row["id"]: row for row in rows or []}
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})

        path = request.url.path.rstrip("/")
        if path.endswith("/batch"):
            raw = request.url.params.get("ids", "")
            ids = [int(i) for i in raw.split(",") if i]
            return httpx.Response(200, json=[self.rows[i] for i in ids if i in self.rows])

        tail = path.rsplit("/", 1)[-1]
        if tail.isdigit():
            row = self.rows.get(int(tail))
            if row is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=row)
        return httpx.Response(200, json=list(self.rows.values()))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def memory_bus():
    bus = MemoryEventBus()
    await bus.start()
    yield bus
    await bus.stop()


@pytest.fixture
def outbox_store() -> MemoryOutboxStore:
    return MemoryOutboxStore()


@pytest.fixture
def view_store() -> MemoryViewStore:
    return MemoryViewStore()


@pytest.fixture
def watch_store(outbox_store) -> MemoryWatchRecordStore:
    return MemoryWatchRecordStore(outbox_store)


@pytest.fixture
def content_store(outbox_store) -> MemoryContentStore:
    return MemoryContentStore(outbox_store)


@pytest.fixture
def catalog_transport() -> CatalogTransport:
    return CatalogTransport([
        catalog_row(1, "Inception"),
        catalog_row(2, "Arrival", genre="Drama", durationMinutes=116),
        catalog_row(3, "Planet Earth", type="DOCUMENTARY", genre="Nature", durationMinutes=50),
    ])


@pytest_asyncio.fixture
async def catalog_client(catalog_transport):
    async with httpx.AsyncClient(transport=httpx.MockTransport(catalog_transport)) as http:
        yield ContentLookupClient("http://catalog/api/catalog", client=http)
