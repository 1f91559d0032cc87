"""Application bootstrap.

Wires settings into a :class:`RelayContext` (bus, stores, HTTP
collaborators, publishers, services, projector, outbox dispatcher) and
runs the long-lived processes: the projector worker and the outbox
dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

import httpx

from .bus.bus import create_event_bus
from .clients.content_lookup import ContentLookupClient
from .core.config import Settings, load_settings
from .core.enums import StoreBackend
from .core.interfaces import (
    IContentStore,
    IEventBus,
    IOutboxStore,
    IViewStore,
    IWatchRecordStore,
)
from .observability.logger import setup_logging
from .projection.projector import ContentViewProjector
from .publishing.outbox import OutboxDispatcher
from .publishing.publisher import ContentEventPublisher, WatchEventPublisher
from .services.aggregation import AggregationService
from .services.content import ContentService
from .services.recommendations import RecommendationService
from .services.watch_history import WatchHistoryService
from .storage.memory import (
    MemoryContentStore,
    MemoryOutboxStore,
    MemoryViewStore,
    MemoryWatchRecordStore,
)
from .storage.sql.connection import Database
from .storage.sql.repos import (
    SqlContentStore,
    SqlOutboxStore,
    SqlViewStore,
    SqlWatchRecordStore,
)

logger = logging.getLogger(__name__)


class RelayContext:
    """Everything one process needs, built once at startup.

    The HTTP client backs the catalog lookup client and is closed by
    :meth:`close` only if the context created it.
    """

    def __init__(
        self,
        settings: Settings,
        event_bus: IEventBus,
        views: IViewStore,
        watch_records: IWatchRecordStore,
        contents: IContentStore,
        outbox: IOutboxStore,
        http_client: httpx.AsyncClient,
        *,
        database: Database | None = None,
        owns_http_client: bool = True,
    ) -> None:
        self.settings = settings
        self.event_bus = event_bus
        self.views = views
        self.watch_records = watch_records
        self.contents = contents
        self.outbox = outbox
        self.database = database
        self.http_client = http_client
        self._owns_http_client = owns_http_client

        enrichment = settings.enrichment
        use_outbox = settings.outbox.enabled

        self.catalog = ContentLookupClient(
            enrichment.catalog_url, client=http_client, timeout=enrichment.request_timeout,
        )

        self.content_publisher = ContentEventPublisher(event_bus)
        self.watch_publisher = WatchEventPublisher(event_bus)

        self.content_service = ContentService(
            contents, self.content_publisher, use_outbox=use_outbox,
        )
        self.watch_history = WatchHistoryService(
            watch_records,
            self.watch_publisher,
            AggregationService(self.catalog, timeout=enrichment.enrichment_timeout),
            use_outbox=use_outbox,
        )
        self.recommendations = RecommendationService(
            views,
            AggregationService(self.catalog, timeout=enrichment.enrichment_timeout),
        )
        self.projector = ContentViewProjector(views)
        self.outbox_dispatcher = OutboxDispatcher(
            outbox,
            event_bus,
            poll_interval=settings.outbox.poll_interval,
            batch_size=settings.outbox.batch_size,
            max_attempts=settings.outbox.max_attempts,
            base_backoff=settings.outbox.base_backoff,
        )

    async def close(self) -> None:
        """Flush publishers, stop the bus, release connections."""
        await self.outbox_dispatcher.stop()
        await self.content_publisher.drain()
        await self.watch_publisher.drain()
        await self.event_bus.stop()
        if self._owns_http_client:
            await self.http_client.aclose()
        if self.database is not None:
            await self.database.dispose()


async def build_context(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> RelayContext:
    """Create every collaborator for *settings*.  The bus is not started."""
    settings.validate_runtime()

    database: Database | None = None
    if settings.store.backend == StoreBackend.SQL:
        database = Database.from_url(
            settings.store.database_url, pool_size=settings.store.pool_size,
        )
        if settings.store.create_tables:
            await database.create_all()
        views: IViewStore = SqlViewStore(database)
        watch_records: IWatchRecordStore = SqlWatchRecordStore(database)
        contents: IContentStore = SqlContentStore(database)
        outbox: IOutboxStore = SqlOutboxStore(database)
    else:
        memory_outbox = MemoryOutboxStore()
        views = MemoryViewStore()
        watch_records = MemoryWatchRecordStore(memory_outbox)
        contents = MemoryContentStore(memory_outbox)
        outbox = memory_outbox

    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.enrichment.request_timeout),
        )

    return RelayContext(
        settings=settings,
        event_bus=create_event_bus(settings.bus),
        views=views,
        watch_records=watch_records,
        contents=contents,
        outbox=outbox,
        http_client=http_client,
        database=database,
        owns_http_client=owns_client,
    )


def _setup_logging(settings: Settings) -> None:
    setup_logging(
        level=settings.observability.log_level,
        format=settings.observability.log_format,
        service_name=settings.service_name,
    )


def _start_metrics(settings: Settings) -> None:
    if not settings.observability.metrics_enabled:
        return
    try:
        from .observability.metrics import start_metrics_server

        port = settings.observability.metrics_port
        start_metrics_server(port=port, service_name=settings.service_name)
        logger.info("Prometheus metrics server started on port %d", port)
    except Exception:
        logger.warning("Failed to start metrics server", exc_info=True)


async def _wait_for_shutdown() -> None:
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)
    await stop_event.wait()


async def open_context(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> RelayContext:
    """Load settings, configure logging, build and start a context."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup_logging(settings)
    ctx = await build_context(settings)
    await ctx.event_bus.start()
    return ctx


async def run_consumer(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Run the projector worker until SIGINT/SIGTERM."""
    ctx = await open_context(config_path, overrides)
    _start_metrics(ctx.settings)
    logger.info(
        "Starting projector for %s as group=%s",
        ctx.projector.topic,
        ctx.settings.bus.consumer_group,
    )
    try:
        await ctx.projector.subscribe(ctx.event_bus, ctx.settings.bus.consumer_group)
        if ctx.settings.outbox.enabled:
            await ctx.outbox_dispatcher.start()
        await _wait_for_shutdown()
    finally:
        await ctx.close()
        logger.info("Shutdown complete (projector=%s)", ctx.projector.stats)


async def run_outbox_dispatcher(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    once: bool = False,
) -> int:
    """Drain the outbox once, or keep sweeping until shut down."""
    ctx = await open_context(config_path, overrides)
    try:
        if once:
            return await ctx.outbox_dispatcher.drain_once()
        _start_metrics(ctx.settings)
        await ctx.outbox_dispatcher.start()
        await _wait_for_shutdown()
        return ctx.outbox_dispatcher.stats["dispatched"]
    finally:
        await ctx.close()
