"""Watch-history service.

Write side: ``record_watch`` commits the record locally, then publishes a
``WatchRecorded`` event (or stages it in the outbox).  Propagation
problems never fail the write.

Read side: ``get_watch_history`` returns a visitor's records newest first,
each joined against the catalog (title, type, genre, duration).
"""

from __future__ import annotations

import logging

from content_relay.core.interfaces import IWatchRecordStore
from content_relay.core.models import CatalogContent, WatchHistoryEntry, WatchRecord
from content_relay.publishing.publisher import WatchEventPublisher

from .aggregation import AggregationService

logger = logging.getLogger(__name__)


def _to_entry(record: WatchRecord, content: CatalogContent | None) -> WatchHistoryEntry:
    return WatchHistoryEntry(
        id=record.id,
        visitor_id=record.visitor_id,
        content_id=record.content_id,
        content_title=content.title if content else None,
        content_type=content.type if content else None,
        genre=content.genre if content else None,
        duration_minutes=content.duration_minutes if content else None,
        watched_seconds=record.watched_seconds,
        watched_at=record.watched_at,
    )


class WatchHistoryService:
    def __init__(
        self,
        store: IWatchRecordStore,
        publisher: WatchEventPublisher,
        aggregation: AggregationService,
        *,
        use_outbox: bool = False,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._aggregation = aggregation
        self._use_outbox = use_outbox

    async def record_watch(self, record: WatchRecord) -> WatchRecord:
        if self._use_outbox:
            saved = await self._store.save(record, stage=self._publisher.stage)
        else:
            saved = await self._store.save(record)
            self._publisher.publish(saved)
        logger.info(
            "Recorded watch id=%s visitor=%s content=%s",
            saved.id, saved.visitor_id, saved.content_id,
        )
        return saved

    async def get_watch_history(self, visitor_id: str) -> list[WatchHistoryEntry]:
        records = await self._store.by_visitor(visitor_id)
        return await self._aggregation.enrich(
            records, lambda r: r.content_id, _to_entry,
        )
