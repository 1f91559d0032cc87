"""Read-time enrichment: join local rows against one batch of remote records.

:meth:`AggregationService.enrich` is the whole read path shared by the
watch-history and recommendation services:

1. collect the distinct remote ids referenced by the local rows, in
   first-seen order,
2. call the lookup collaborator **once** with that set, bounded by
   ``timeout``,
3. compose one response row per local row; rows whose id did not resolve
   get ``None`` for every remote-sourced field but are still returned.

A timed-out, cancelled or failing batch call degrades to "nothing
resolved".  Only cancellation of the *calling* task propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from typing import TypeVar

from content_relay.core.interfaces import IContentLookup
from content_relay.core.models import CatalogContent
from content_relay.observability import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
O = TypeVar("O")


class AggregationService:
    """Batch enrichment orchestrator.

    Parameters
    ----------
    lookup:
        Remote collaborator; its ``fetch_batch`` is called at most once
        per :meth:`enrich`.
    timeout:
        Upper bound in seconds on the batch call.
    """

    def __init__(self, lookup: IContentLookup, *, timeout: float = 3.0) -> None:
        self._lookup = lookup
        self._timeout = timeout

    async def enrich(
        self,
        rows: Sequence[T],
        id_of: Callable[[T], int],
        compose: Callable[[T, CatalogContent | None], O],
    ) -> list[O]:
        """Join *rows* against the collaborator, preserving their order."""
        if not rows:
            return []

        ids = list(dict.fromkeys(id_of(row) for row in rows))
        resolved = await self._fetch(ids)
        if len(resolved) < len(ids):
            logger.debug("Enrichment resolved %d of %d ids", len(resolved), len(ids))
        return [compose(row, resolved.get(id_of(row))) for row in rows]

    async def _fetch(self, ids: list[int]) -> dict[int, CatalogContent]:
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                self._lookup.fetch_batch(ids), timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            metrics.record_enrichment_degraded("timeout")
            logger.warning(
                "Enrichment of %d ids timed out after %.1fs; returning local data only",
                len(ids), self._timeout,
            )
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            metrics.record_enrichment_degraded("cancelled")
            logger.warning(
                "Enrichment of %d ids was cancelled; returning local data only", len(ids),
            )
        except Exception:
            metrics.record_enrichment_degraded("error")
            logger.exception("Enrichment of %d ids failed", len(ids))
        finally:
            metrics.record_enrichment_latency(time.monotonic() - started)
        return {}
