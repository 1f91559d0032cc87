"""Core domain models used across the content relay.

Records owned by an originating service (``ContentRecord``,
``CatalogContent``, ``WatchRecord``), the consumer-owned projection
(``ContentView``) and the per-request enriched rows
(``WatchHistoryEntry``, ``Recommendation``).

Wire shapes are camelCase; Python attributes are snake_case.  Every model
accepts either spelling on input.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import ContentType
from .ids import as_utc, utc_now


class CamelModel(BaseModel):
    """Base for models exchanged with other services as JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Authoritative records (owned by the originating service)
# ---------------------------------------------------------------------------

class ContentRecord(CamelModel):
    """Content item owned by the content service."""

    id: int | None = None  # Assigned by the store on save
    title: str
    type: ContentType
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class CatalogContent(CamelModel):
    """Catalog entry as served by the batch / single-record endpoints.

    Only ``id`` is guaranteed; the catalog may omit descriptive fields.
    """

    id: int
    title: str | None = None
    type: str | None = None
    duration_minutes: int | None = None
    genre: str | None = None
    # The content service calls this createdAt
    published_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("publishedAt", "createdAt", "published_at"),
    )


class WatchRecord(CamelModel):
    """A visitor watched some content for a number of seconds."""

    id: int | None = None
    visitor_id: str = Field(min_length=1)
    content_id: int
    watched_seconds: int = Field(ge=0)
    watched_at: datetime = Field(default_factory=utc_now)

    @field_validator("watched_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ---------------------------------------------------------------------------
# Projected view (owned by the consuming service)
# ---------------------------------------------------------------------------

class ContentView(CamelModel):
    """Denormalised local view of a content item, one per ``content_id``.

    Mutated only by the projector.  May be missing or stale.
    """

    content_id: int
    content_title: str
    content_type: str | None = None
    viewed_at: datetime
    last_event_id: str | None = None

    @field_validator("viewed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ---------------------------------------------------------------------------
# Enriched responses (computed per request, never persisted)
# ---------------------------------------------------------------------------

class WatchHistoryEntry(CamelModel):
    """One watch record joined against the catalog.

    Catalog-sourced fields are ``None`` when the content did not resolve.
    """

    id: int | None
    visitor_id: str
    content_id: int
    content_title: str | None = None
    content_type: str | None = None
    genre: str | None = None
    duration_minutes: int | None = None
    watched_seconds: int
    watched_at: datetime


class Recommendation(CamelModel):
    """One recently viewed item joined against the catalog."""

    content_id: int
    title: str
    type: str | None = None
    genre: str | None = None
    duration_minutes: int | None = None
    published_at: datetime | None = None
    viewed_at: datetime
