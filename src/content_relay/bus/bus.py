"""Event bus factory.

Creates the appropriate event bus implementation based on configuration.
"""

from __future__ import annotations

from collections.abc import Callable

from content_relay.core.config import BusConfig
from content_relay.core.enums import BusBackend

from .memory_bus import MemoryEventBus
from .redis_streams import RedisStreamsBus


def create_event_bus(
    config: BusConfig,
    on_handler_error: Callable[
        [str, str, str, Exception], None
    ] | None = None,
) -> MemoryEventBus | RedisStreamsBus:
    """Create an event bus for the configured backend.

    - MEMORY: MemoryEventBus (no external deps, deterministic)
    - REDIS: RedisStreamsBus (persistent, partitioned)

    Args:
        config: Bus section of the settings.
        on_handler_error: Optional callback ``(topic, group, msg_id, exc)``
            invoked when a handler raises.
    """
    if config.backend == BusBackend.MEMORY:
        return MemoryEventBus(
            max_handler_retries=config.max_handler_retries,
            on_handler_error=on_handler_error,
        )
    return RedisStreamsBus(
        redis_url=config.redis_url,
        partitions=config.partitions,
        max_stream_length=config.max_stream_length,
        block_ms=config.block_ms,
        batch_size=config.batch_size,
        max_handler_retries=config.max_handler_retries,
        retry_backoff=config.retry_backoff,
        on_handler_error=on_handler_error,
    )
