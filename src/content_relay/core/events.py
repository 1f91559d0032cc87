"""Event envelope and payload schemas.

Every fact that crosses a service boundary travels as an
:class:`EventEnvelope` whose ``payload`` is the JSON-encoded payload model.
The envelope ``key`` is the id of the entity that caused the event, so the
bus can keep all events about one entity in order.

Two event families exist:

* ``ContentCreated`` on ``content-events``, key = ``str(id)``
* ``WatchRecorded`` on ``watch-events``, key = ``visitorId``
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar, TypeVar

from pydantic import Field, ValidationError, field_validator
from pydantic_core import PydanticSerializationError

from .enums import OutboxStatus
from .errors import DeserializationError, SerializationError
from .ids import as_utc, new_id, utc_now
from .models import CamelModel


class EventPayload(CamelModel):
    """Base for event payloads.  ``event_type`` names the wire type."""

    event_type: ClassVar[str] = ""

    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class ContentCreated(EventPayload):
    event_type: ClassVar[str] = "ContentCreated"

    id: int
    title: str
    type: str


class WatchRecorded(EventPayload):
    event_type: ClassVar[str] = "WatchRecorded"

    visitor_id: str
    content_id: int
    watched_seconds: int


P = TypeVar("P", bound=EventPayload)


class EventEnvelope(CamelModel):
    """Shared shape for all events on the bus.

    ``event_id`` identifies one emission and is stable across redelivery;
    projectors may use it for dedup.
    """

    event_id: str = Field(default_factory=new_id)
    key: str
    type: str
    payload: str
    occurred_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def wrap(cls, payload: EventPayload, key: str) -> EventEnvelope:
        """Serialise *payload* and wrap it under *key*.

        Raises
        ------
        SerializationError
            If the payload cannot be encoded as JSON.
        """
        try:
            body = payload.model_dump_json(by_alias=True)
        except (PydanticSerializationError, ValueError, TypeError) as exc:
            raise SerializationError(
                f"Cannot encode {type(payload).__name__}: {exc}"
            ) from exc
        return cls(key=key, type=payload.event_type, payload=body)

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_wire(cls, raw: str | bytes) -> EventEnvelope:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise DeserializationError("EventEnvelope", str(exc)) from exc


def decode_payload(envelope: EventEnvelope, model: type[P]) -> P:
    """Decode the envelope payload into *model*.

    Raises
    ------
    DeserializationError
        On a type mismatch or a payload that fails validation.
    """
    if envelope.type != model.event_type:
        raise DeserializationError(
            model.event_type,
            f"envelope carries {envelope.type!r}",
        )
    try:
        return model.model_validate_json(envelope.payload)
    except ValidationError as exc:
        raise DeserializationError(model.event_type, str(exc)) from exc


class OutboxEntry(CamelModel):
    """An envelope staged for dispatch alongside the write that caused it."""

    id: int | None = None
    topic: str
    envelope: EventEnvelope
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    dispatched_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.dispatched_at is None

    @property
    def status(self) -> OutboxStatus:
        return OutboxStatus.PENDING if self.is_pending else OutboxStatus.DISPATCHED
