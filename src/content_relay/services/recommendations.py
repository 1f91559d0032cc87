"""Recommendation service: recent content views enriched from the catalog."""

from __future__ import annotations

import logging

from content_relay.core.interfaces import IViewStore
from content_relay.core.models import CatalogContent, ContentView, Recommendation

from .aggregation import AggregationService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def _to_recommendation(view: ContentView, content: CatalogContent | None) -> Recommendation:
    return Recommendation(
        content_id=view.content_id,
        title=view.content_title,
        type=view.content_type,
        genre=content.genre if content else None,
        duration_minutes=content.duration_minutes if content else None,
        published_at=content.published_at if content else None,
        viewed_at=view.viewed_at,
    )


class RecommendationService:
    def __init__(self, views: IViewStore, aggregation: AggregationService) -> None:
        self._views = views
        self._aggregation = aggregation

    async def get_recommendations(self, limit: int = DEFAULT_LIMIT) -> list[Recommendation]:
        """Most recently viewed content first, one catalog round trip."""
        views = await self._views.recent(limit)
        return await self._aggregation.enrich(
            views, lambda v: v.content_id, _to_recommendation,
        )

    async def get_content_views(self) -> list[ContentView]:
        """Raw projected views, unenriched."""
        return await self._views.list_all()
