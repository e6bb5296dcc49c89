"""Paginated ServiceTitan data sources.

Each source is an async iterator over raw API records. Iteration is
restartable: every ``async for`` starts from the configured start position.
Errors surface immediately; ``last_page`` / ``last_token`` record how far a
failed iteration got so a caller can resume.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date, datetime
from typing import Any, Optional

from shoutout.integration.servicetitan import ServiceTitanClient
from shoutout.pipeline.types import parse_timestamp

logger = logging.getLogger(__name__)

PRICEBOOK_TYPES = ("materials", "equipment", "services")


def _format_bound(value: date | datetime | str) -> str:
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    return value


class PaginatedSource(ABC):
    """Base class for paginated ServiceTitan reads.

    Subclasses implement ``fetch_pages()``; records are flattened by
    ``__aiter__``. A courtesy delay is applied between page requests.
    """

    def __init__(
        self,
        client: ServiceTitanClient,
        source_name: str,
        page_size: int | None = None,
        delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.source_name = source_name
        self.page_size = page_size or client.config.page_size
        self.delay_seconds = (
            client.config.request_delay_seconds if delay_seconds is None else delay_seconds
        )
        self._sleep = sleep
        self.requests_made = 0
        self.logger = logging.getLogger(f"{__name__}.{source_name}")

    @abstractmethod
    def fetch_pages(self) -> AsyncIterator[list[dict]]:
        """Yield one list of records per API page."""

    async def _get(self, path: str, params: dict[str, Any]) -> dict:
        if self.requests_made and self.delay_seconds > 0:
            await self._sleep(self.delay_seconds)
        self.requests_made += 1
        return await self.client.get_json(path, params=params)

    async def __aiter__(self) -> AsyncIterator[dict]:
        self.requests_made = 0
        async for page in self.fetch_pages():
            for record in page:
                yield record

    async def fetch_all(self) -> list[dict]:
        return [record async for record in self]


class PagedEstimateSource(PaginatedSource):
    """Sold estimates via page-numbered pagination.

    Stops when a page holds fewer than ``page_size`` records. ``sold_before``
    is applied client-side since the endpoint only takes a lower bound.
    """

    def __init__(
        self,
        client: ServiceTitanClient,
        sold_after: date | datetime | str,
        sold_before: Optional[datetime] = None,
        start_page: int = 1,
        **kwargs: Any,
    ):
        super().__init__(client, "estimates_paged", **kwargs)
        self.sold_after = sold_after
        self.sold_before = parse_timestamp(sold_before) if sold_before else None
        self.start_page = start_page
        self.last_page: int | None = None

    def _in_range(self, record: dict) -> bool:
        if self.sold_before is None:
            return True
        sold_on = parse_timestamp(record.get("soldOn"))
        return sold_on is None or sold_on <= self.sold_before

    async def fetch_pages(self) -> AsyncIterator[list[dict]]:
        path = self.client.tenant_path("sales", "estimates")
        page = self.start_page

        while True:
            data = await self._get(
                path,
                {
                    "soldAfter": _format_bound(self.sold_after),
                    "page": page,
                    "pageSize": self.page_size,
                },
            )
            records = data.get("data") or []
            self.last_page = page
            self.logger.info("Page %s: %s estimates", page, len(records))

            yield [record for record in records if self._in_range(record)]

            if len(records) < self.page_size:
                break
            page += 1


class ExportEstimateSource(PaginatedSource):
    """Sold estimates via the export endpoint's continuation tokens.

    Stops when the response has no ``continueFrom`` token or an empty page.
    """

    def __init__(
        self,
        client: ServiceTitanClient,
        sold_on_or_after: date | datetime | str,
        sold_on_or_before: date | datetime | str,
        continue_from: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(client, "estimates_export", **kwargs)
        self.sold_on_or_after = sold_on_or_after
        self.sold_on_or_before = sold_on_or_before
        self.continue_from = continue_from
        self.last_token: str | None = None

    async def fetch_pages(self) -> AsyncIterator[list[dict]]:
        path = self.client.tenant_path("sales", "estimates/export")
        token = self.continue_from
        page = 1

        while True:
            params: dict[str, Any] = {
                "soldOnOrAfter": _format_bound(self.sold_on_or_after),
                "soldOnOrBefore": _format_bound(self.sold_on_or_before),
                "status": "Sold",
                "pageSize": self.page_size,
            }
            if token:
                params["continueFrom"] = token

            data = await self._get(path, params)
            records = data.get("data") or []
            self.last_token = token
            self.logger.info("Export page %s: %s estimates", page, len(records))

            if records:
                yield records

            token = data.get("continueFrom")
            if not token or not records:
                break
            page += 1


class ListingSource(PaginatedSource):
    """Page-numbered listing of tenant resources (pricebook, technicians).

    Stops when ``hasMore`` is false; when the flag is absent, a short page
    ends the listing.
    """

    def __init__(self, client: ServiceTitanClient, service: str, resource: str, **kwargs: Any):
        super().__init__(client, f"{service}_{resource}", **kwargs)
        self.service = service
        self.resource = resource
        self.last_page: int | None = None

    async def fetch_pages(self) -> AsyncIterator[list[dict]]:
        path = self.client.tenant_path(self.service, self.resource)
        page = 1

        while True:
            data = await self._get(path, {"page": page, "pageSize": self.page_size})
            records = data.get("data") or []
            self.last_page = page

            if records:
                yield records

            has_more = data.get("hasMore")
            if has_more is None:
                has_more = len(records) >= self.page_size
            if not records or not has_more:
                break
            page += 1


class PricebookSource(ListingSource):
    """Pricebook items of one type: materials, equipment or services."""

    def __init__(self, client: ServiceTitanClient, item_type: str, **kwargs: Any):
        if item_type not in PRICEBOOK_TYPES:
            raise ValueError(f"Unknown pricebook type: {item_type}")
        super().__init__(client, "pricebook", item_type, **kwargs)
        self.item_type = item_type


class TechnicianSource(ListingSource):
    def __init__(self, client: ServiceTitanClient, **kwargs: Any):
        super().__init__(client, "settings", "technicians", **kwargs)
