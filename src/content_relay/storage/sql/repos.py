"""SQL repositories implementing the store protocols.

Each repository holds the injected :class:`Database` and opens one session
per operation.  A record store's ``save`` writes the row, flushes to obtain
its id, and stages the outbox entry (when asked to) in the *same* session,
so both commit or neither does.

Conversion helpers translate between core models
(:mod:`content_relay.core.models`) and ORM rows.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from content_relay.core.enums import ContentType
from content_relay.core.events import EventEnvelope, OutboxEntry
from content_relay.core.ids import as_utc, utc_now
from content_relay.core.interfaces import EventStager
from content_relay.core.models import ContentRecord, ContentView, WatchRecord

from .connection import Database
from .models import ContentRow, ContentViewRow, OutboxRow, WatchRecordRow

logger = logging.getLogger(__name__)

_DIALECT_INSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _row_to_view(row: ContentViewRow) -> ContentView:
    return ContentView(
        content_id=row.content_id,
        content_title=row.content_title,
        content_type=row.content_type,
        viewed_at=row.viewed_at,
        last_event_id=row.last_event_id,
    )


def _row_to_watch(row: WatchRecordRow) -> WatchRecord:
    return WatchRecord(
        id=row.id,
        visitor_id=row.visitor_id,
        content_id=row.content_id,
        watched_seconds=row.watched_seconds,
        watched_at=row.watched_at,
    )


def _row_to_content(row: ContentRow) -> ContentRecord:
    return ContentRecord(
        id=row.id,
        title=row.title,
        type=ContentType(row.type),
        created_at=row.created_at,
    )


def _row_to_entry(row: OutboxRow) -> OutboxEntry:
    return OutboxEntry(
        id=row.id,
        topic=row.topic,
        envelope=EventEnvelope.from_wire(row.envelope),
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=as_utc(row.created_at),
        dispatched_at=as_utc(row.dispatched_at) if row.dispatched_at else None,
    )


def _stage(session: AsyncSession, record: Any, stage: EventStager | None) -> None:
    """Add the outbox row for *record* to *session*, if staging was requested."""
    staged = stage(record) if stage is not None else None
    if staged is None:
        return
    topic, envelope = staged
    session.add(
        OutboxRow(
            topic=topic,
            event_id=envelope.event_id,
            envelope=envelope.to_wire(),
        )
    )


# ---------------------------------------------------------------------------
# SqlViewStore
# ---------------------------------------------------------------------------

class SqlViewStore:
    """``content_view`` table, one row per content id."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(self, view: ContentView) -> None:
        """Insert the view or overwrite the row for its ``content_id``.

        PostgreSQL and SQLite use ``INSERT .. ON CONFLICT DO UPDATE`` so the
        write is a single atomic statement.  Other dialects fall back to
        ``session.merge`` on the primary key.
        """
        values = {
            "content_id": view.content_id,
            "content_title": view.content_title,
            "content_type": view.content_type,
            "viewed_at": view.viewed_at,
            "last_event_id": view.last_event_id,
        }
        insert = _DIALECT_INSERT.get(self._db.dialect)
        async with self._db.session() as session:
            if insert is None:
                await session.merge(ContentViewRow(**values))
                return
            stmt = insert(ContentViewRow).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ContentViewRow.content_id],
                set_={k: stmt.excluded[k] for k in values if k != "content_id"},
            )
            await session.execute(stmt)

    async def get(self, content_id: int) -> ContentView | None:
        async with self._db.session() as session:
            row = await session.get(ContentViewRow, content_id)
            return _row_to_view(row) if row is not None else None

    async def recent(self, limit: int = 10) -> list[ContentView]:
        stmt = (
            select(ContentViewRow)
            .order_by(ContentViewRow.viewed_at.desc(), ContentViewRow.content_id.desc())
            .limit(limit)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_row_to_view(r) for r in result.scalars().all()]

    async def list_all(self) -> list[ContentView]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ContentViewRow).order_by(ContentViewRow.content_id)
            )
            return [_row_to_view(r) for r in result.scalars().all()]


# ---------------------------------------------------------------------------
# SqlWatchRecordStore
# ---------------------------------------------------------------------------

class SqlWatchRecordStore:
    """``watch_record`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(
        self,
        record: WatchRecord,
        stage: EventStager[WatchRecord] | None = None,
    ) -> WatchRecord:
        async with self._db.session() as session:
            row = WatchRecordRow(
                visitor_id=record.visitor_id,
                content_id=record.content_id,
                watched_seconds=record.watched_seconds,
                watched_at=record.watched_at,
            )
            session.add(row)
            await session.flush()
            saved = record.model_copy(update={"id": row.id})
            _stage(session, saved, stage)
        return saved

    async def by_visitor(self, visitor_id: str) -> list[WatchRecord]:
        stmt = (
            select(WatchRecordRow)
            .where(WatchRecordRow.visitor_id == visitor_id)
            .order_by(WatchRecordRow.watched_at.desc(), WatchRecordRow.id.desc())
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_row_to_watch(r) for r in result.scalars().all()]


# ---------------------------------------------------------------------------
# SqlContentStore
# ---------------------------------------------------------------------------

class SqlContentStore:
    """``content`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(
        self,
        record: ContentRecord,
        stage: EventStager[ContentRecord] | None = None,
    ) -> ContentRecord:
        async with self._db.session() as session:
            row = ContentRow(
                title=record.title,
                type=record.type.value,
                created_at=record.created_at,
            )
            session.add(row)
            await session.flush()
            saved = record.model_copy(update={"id": row.id})
            _stage(session, saved, stage)
        return saved

    async def get(self, content_id: int) -> ContentRecord | None:
        async with self._db.session() as session:
            row = await session.get(ContentRow, content_id)
            return _row_to_content(row) if row is not None else None

    async def list_all(self) -> list[ContentRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(ContentRow).order_by(ContentRow.id))
            return [_row_to_content(r) for r in result.scalars().all()]


# ---------------------------------------------------------------------------
# SqlOutboxStore
# ---------------------------------------------------------------------------

class SqlOutboxStore:
    """``outbox`` table, drained by the outbox dispatcher."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def pending(self, limit: int = 100) -> list[OutboxEntry]:
        stmt = (
            select(OutboxRow)
            .where(OutboxRow.dispatched_at.is_(None))
            .order_by(OutboxRow.id)
            .limit(limit)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_row_to_entry(r) for r in result.scalars().all()]

    async def mark_dispatched(self, entry_id: int) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(OutboxRow)
                .where(OutboxRow.id == entry_id)
                .values(dispatched_at=utc_now(), attempts=OutboxRow.attempts + 1)
            )

    async def record_failure(self, entry_id: int, error: str) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(OutboxRow)
                .where(OutboxRow.id == entry_id)
                .values(last_error=error, attempts=OutboxRow.attempts + 1)
            )
