"""Tests for Prometheus metric helpers and their call sites."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from content_relay.core.errors import TransportError
from content_relay.core.events import EventEnvelope
from content_relay.core.models import CatalogContent
from content_relay.observability.metrics import (
    ENRICHMENT_DEGRADED,
    EVENTS_DROPPED,
    EVENTS_FAILED,
    EVENTS_PROJECTED,
    EVENTS_PUBLISHED,
    OUTBOX_DISPATCHED,
    record_enrichment_degraded,
    record_projection,
    record_published,
)
from content_relay.projection.projector import ContentViewProjector
from content_relay.publishing.outbox import OutboxDispatcher
from content_relay.publishing.publisher import ContentEventPublisher
from content_relay.services.aggregation import AggregationService

from tests.conftest import make_content, make_content_event


def _value(metric, **labels) -> float:
    return metric.labels(**labels)._value.get()


class TestMetricsHelpers:
    def test_record_published_increments_counter(self):
        labels = {"topic": "helper-topic", "event_type": "ContentCreated"}
        before = _value(EVENTS_PUBLISHED, **labels)

        record_published("helper-topic", "ContentCreated")

        assert _value(EVENTS_PUBLISHED, **labels) == before + 1

    def test_record_projection_splits_by_outcome(self):
        before_applied = _value(EVENTS_PROJECTED, topic="helper-topic", outcome="applied")
        before_skipped = _value(EVENTS_PROJECTED, topic="helper-topic", outcome="skipped")

        record_projection("helper-topic", "skipped")

        assert _value(EVENTS_PROJECTED, topic="helper-topic", outcome="applied") == before_applied
        assert _value(EVENTS_PROJECTED, topic="helper-topic", outcome="skipped") == before_skipped + 1

    def test_record_enrichment_degraded(self):
        before = _value(ENRICHMENT_DEGRADED, reason="helper")
        record_enrichment_degraded("helper")
        assert _value(ENRICHMENT_DEGRADED, reason="helper") == before + 1


class TestCallSites:
    @pytest.mark.asyncio
    async def test_publisher_success_and_failure(self, memory_bus):
        labels = {"topic": "content-events", "event_type": "ContentCreated"}
        published = _value(EVENTS_PUBLISHED, **labels)
        failed = _value(EVENTS_FAILED, **labels)

        publisher = ContentEventPublisher(memory_bus)
        publisher.publish(make_content(1))
        await publisher.drain()

        bus = AsyncMock()
        bus.publish.side_effect = TransportError("down")
        broken = ContentEventPublisher(bus)
        broken.publish(make_content(2))
        await broken.drain()

        assert _value(EVENTS_PUBLISHED, **labels) == published + 1
        assert _value(EVENTS_FAILED, **labels) == failed + 1

    def test_publisher_drop(self):
        before = _value(EVENTS_DROPPED, topic="content-events")
        publisher = ContentEventPublisher(AsyncMock())

        assert publisher.stage(make_content(None)) is None
        assert _value(EVENTS_DROPPED, topic="content-events") == before + 1

    @pytest.mark.asyncio
    async def test_projector_outcomes(self, view_store):
        applied = _value(EVENTS_PROJECTED, topic="content-events", outcome="applied")
        skipped = _value(EVENTS_PROJECTED, topic="content-events", outcome="skipped")
        projector = ContentViewProjector(view_store)

        await projector.handle(make_content_event(1, "Inception"))
        await projector.handle(EventEnvelope(key="1", type="ContentCreated", payload="{}"))

        assert _value(EVENTS_PROJECTED, topic="content-events", outcome="applied") == applied + 1
        assert _value(EVENTS_PROJECTED, topic="content-events", outcome="skipped") == skipped + 1

    @pytest.mark.asyncio
    async def test_outbox_dispatch(self, content_store, outbox_store, memory_bus):
        before = _value(OUTBOX_DISPATCHED, topic="content-events")
        publisher = ContentEventPublisher(memory_bus)
        await content_store.save(make_content(None, "Heat"), stage=publisher.stage)

        sent = await OutboxDispatcher(outbox_store, memory_bus).drain_once()

        assert sent == 1
        assert _value(OUTBOX_DISPATCHED, topic="content-events") == before + 1

    @pytest.mark.asyncio
    async def test_enrichment_timeout_counted(self):
        before = _value(ENRICHMENT_DEGRADED, reason="timeout")
        lookup = AsyncMock()

        async def hang(ids):
            await asyncio.sleep(5)
            return {1: CatalogContent(id=1, title="A")}

        lookup.fetch_batch.side_effect = hang

        await AggregationService(lookup, timeout=0.01).enrich(
            [1], lambda r: r, lambda r, c: c,
        )

        assert _value(ENRICHMENT_DEGRADED, reason="timeout") == before + 1
