"""Enumerations used across the content relay."""

from enum import Enum


class ContentType(str, Enum):
    MOVIE = "MOVIE"
    SERIES = "SERIES"
    SHOW = "SHOW"
    DOCUMENTARY = "DOCUMENTARY"
    SHORT = "SHORT"


class Topic(str, Enum):
    CONTENT_EVENTS = "content-events"
    WATCH_EVENTS = "watch-events"


class BusBackend(str, Enum):
    MEMORY = "memory"  # In-process, deterministic (tests, local runs)
    REDIS = "redis"  # Redis Streams consumer groups


class StoreBackend(str, Enum):
    MEMORY = "memory"
    SQL = "sql"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
