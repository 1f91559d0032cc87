from content_relay.services.aggregation import AggregationService
from content_relay.services.content import ContentService
from content_relay.services.recommendations import RecommendationService
from content_relay.services.watch_history import WatchHistoryService

__all__ = [
    "AggregationService",
    "ContentService",
    "RecommendationService",
    "WatchHistoryService",
]
