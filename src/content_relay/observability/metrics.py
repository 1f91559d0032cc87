"""Prometheus metrics endpoint.

Exposes pipeline counters (publishing, outbox, projection, enrichment) for
scraping.  The in-process ``stats`` properties on each component stay the
source of truth for tests; these series mirror them per process.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("content_relay", "Content relay process information")

# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

EVENTS_PUBLISHED = Counter(
    "content_relay_events_published_total",
    "Events the bus accepted",
    ["topic", "event_type"],
)

EVENTS_FAILED = Counter(
    "content_relay_events_failed_total",
    "Fire-and-forget submissions that failed or were cancelled",
    ["topic", "event_type"],
)

EVENTS_DROPPED = Counter(
    "content_relay_events_dropped_total",
    "Events dropped before submission",
    ["topic"],
)

OUTBOX_DISPATCHED = Counter(
    "content_relay_outbox_dispatched_total",
    "Outbox entries handed to the bus",
    ["topic"],
)

OUTBOX_FAILURES = Counter(
    "content_relay_outbox_failures_total",
    "Failed outbox publish attempts",
    ["topic"],
)

# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

EVENTS_PROJECTED = Counter(
    "content_relay_events_projected_total",
    "Events applied to a view",
    ["topic", "outcome"],
)

ENRICHMENT_LATENCY = Histogram(
    "content_relay_enrichment_seconds",
    "Time spent in one batch enrichment call",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0],
)

ENRICHMENT_DEGRADED = Counter(
    "content_relay_enrichment_degraded_total",
    "Reads served without collaborator data",
    ["reason"],
)


def start_metrics_server(port: int = 9090, service_name: str = "unknown") -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({
        "version": "0.1.0",
        "service": service_name,
    })
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_published(topic: str, event_type: str) -> None:
    EVENTS_PUBLISHED.labels(topic=topic, event_type=event_type).inc()


def record_publish_failed(topic: str, event_type: str) -> None:
    EVENTS_FAILED.labels(topic=topic, event_type=event_type).inc()


def record_dropped(topic: str) -> None:
    EVENTS_DROPPED.labels(topic=topic).inc()


def record_outbox_dispatched(topic: str) -> None:
    OUTBOX_DISPATCHED.labels(topic=topic).inc()


def record_outbox_failure(topic: str) -> None:
    OUTBOX_FAILURES.labels(topic=topic).inc()


def record_projection(topic: str, outcome: str) -> None:
    """Record one handled event; *outcome* is ``applied`` or ``skipped``."""
    EVENTS_PROJECTED.labels(topic=topic, outcome=outcome).inc()


def record_enrichment_latency(seconds: float) -> None:
    ENRICHMENT_LATENCY.observe(seconds)


def record_enrichment_degraded(reason: str) -> None:
    """Record a read that fell back to local data (timeout, cancelled, error)."""
    ENRICHMENT_DEGRADED.labels(reason=reason).inc()
