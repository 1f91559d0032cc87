"""Content service: owns content items and announces their creation."""

from __future__ import annotations

import logging

from content_relay.core.enums import ContentType
from content_relay.core.interfaces import IContentStore
from content_relay.core.models import ContentRecord
from content_relay.publishing.publisher import ContentEventPublisher

logger = logging.getLogger(__name__)


class ContentService:
    def __init__(
        self,
        store: IContentStore,
        publisher: ContentEventPublisher,
        *,
        use_outbox: bool = False,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._use_outbox = use_outbox

    async def create_content(self, title: str, type: ContentType | str) -> ContentRecord:
        """Commit a new content item, then emit ``ContentCreated``."""
        record = ContentRecord(title=title, type=ContentType(type))
        if self._use_outbox:
            saved = await self._store.save(record, stage=self._publisher.stage)
        else:
            saved = await self._store.save(record)
            self._publisher.publish(saved)
        logger.info("Created content id=%s title=%r", saved.id, saved.title)
        return saved

    async def get_content(self, content_id: int) -> ContentRecord | None:
        return await self._store.get(content_id)

    async def list_content(self) -> list[ContentRecord]:
        return await self._store.list_all()
