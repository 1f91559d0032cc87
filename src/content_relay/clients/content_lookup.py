"""HTTP client for content descriptions owned by another service.

Wraps one long-lived ``httpx.AsyncClient`` (injected, or created by
:meth:`ContentLookupClient.open`) and exposes three reads:

* ``fetch_batch(ids)``: ``GET {base}/batch?ids=1,2,3``, one round trip
* ``get_one(id)``: ``GET {base}/{id}``, 404 means "no value"
* ``list_all()``: ``GET {base}``

Inside the client HTTP failures are raised as ``TransportError``.  The
reads never let it out: on transport, status or decoding errors they log
and return an empty result.  Callers treat a missing id as unresolved.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx
from pydantic import TypeAdapter

from content_relay.core.errors import NotFoundError, TransportError
from content_relay.core.models import CatalogContent

logger = logging.getLogger(__name__)

_ROWS = TypeAdapter(list[CatalogContent])


class ContentLookupClient:
    """Batch enrichment client for a content-owning collaborator.

    Parameters
    ----------
    base_url:
        Collection URL, e.g. ``http://catalog:8082/api/catalog``.
    client:
        Shared ``httpx.AsyncClient``.  When given, the caller owns its
        lifecycle and :meth:`close` leaves it open.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 2.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._round_trips = 0

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client if none was injected."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ContentLookupClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def round_trips(self) -> int:
        """Number of HTTP requests issued so far."""
        return self._round_trips

    # -- Reads ---------------------------------------------------------------

    async def fetch_batch(self, ids: Iterable[int]) -> dict[int, CatalogContent]:
        """Fetch every resolvable id in *ids* with a single request.

        Returns
        -------
        dict[int, CatalogContent]
            Entries only for ids the collaborator returned.  Empty input,
            or any failure, yields ``{}``.
        """
        wanted = set(ids)
        if not wanted:
            return {}

        params = {"ids": ",".join(str(i) for i in sorted(wanted))}
        try:
            resp = await self._get(f"{self._base_url}/batch", params=params)
            rows = _ROWS.validate_python(resp.json())
        except (NotFoundError, TransportError, ValueError) as exc:
            logger.warning(
                "Batch lookup of %d ids at %s failed: %s",
                len(wanted), self._base_url, exc,
            )
            return {}

        found = {row.id: row for row in rows if row.id in wanted}
        if len(found) < len(wanted):
            logger.debug(
                "Batch lookup resolved %d of %d ids", len(found), len(wanted),
            )
        return found

    async def get_one(self, content_id: int) -> CatalogContent | None:
        """Fetch a single record; ``None`` when absent or unreachable."""
        try:
            resp = await self._get(f"{self._base_url}/{content_id}")
            return CatalogContent.model_validate(resp.json())
        except NotFoundError:
            logger.debug("Content %s not found at %s", content_id, self._base_url)
            return None
        except (TransportError, ValueError) as exc:
            logger.error(
                "Failed to fetch content with id %s: %s", content_id, exc,
            )
            return None

    async def list_all(self) -> list[CatalogContent]:
        """Fetch the whole collection; ``[]`` on failure."""
        try:
            resp = await self._get(self._base_url)
            return _ROWS.validate_python(resp.json())
        except (NotFoundError, TransportError, ValueError) as exc:
            logger.error("Failed to fetch all content: %s", exc)
            return []

    async def _get(self, url: str, params: dict[str, str] | None = None) -> httpx.Response:
        """Issue a GET and return a 2xx response.

        Raises :class:`NotFoundError` on 404 and :class:`TransportError`
        for any other HTTP or connection failure.
        """
        if self._client is None:
            raise TransportError("Client not opened. Use 'async with' or call open().")
        self._round_trips += 1
        try:
            resp = await self._client.get(url, params=params, timeout=self._timeout)
            if resp.status_code == 404:
                raise NotFoundError(f"{url} not found")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        return resp
