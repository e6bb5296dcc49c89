"""SKU to cross-sale group cache backed by ``pricebook_items``."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.db.models import PricebookItemModel

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_PAGE_SIZE = 1000
# Wait before retrying a bulk load that failed
DEFAULT_RETRY_SECONDS = 60


class ClassificationCache:
    """In-memory ``sku_id -> cross_sale_group`` map with TTL-based reload.

    The async methods (``get``, ``warm``) hit storage as needed. ``lookup`` is
    a map-only read so a pure function can classify items once the cache
    has been warmed for an estimate. Misses resolved by point lookup are
    cached, including negative results. After a failed bulk load the
    cache serves what it has and waits ``retry_seconds`` before reloading.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        retry_seconds: float = DEFAULT_RETRY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.page_size = page_size
        self.retry_seconds = retry_seconds
        self.clock = clock
        self._cache: dict[int, str | None] = {}
        self._loaded_at: float | None = None
        self._last_loaded: datetime | None = None
        self._failed_at: float | None = None

    @property
    def is_fresh(self) -> bool:
        return self._loaded_at is not None and self.clock() - self._loaded_at < self.ttl_seconds

    async def init(self) -> None:
        await self._ensure_loaded()

    async def refresh(self) -> None:
        """Force a reload, e.g. after a pricebook sync."""
        self._loaded_at = None
        self._failed_at = None
        await self._ensure_loaded()

    def clear(self) -> None:
        self._cache.clear()
        self._loaded_at = None
        self._last_loaded = None
        self._failed_at = None

    def stats(self) -> dict:
        return {
            "size": len(self._cache),
            "last_loaded": self._last_loaded.isoformat() if self._last_loaded else None,
            "ttl_seconds": self.ttl_seconds,
        }

    def lookup(self, sku_id: int) -> str | None:
        return self._cache.get(sku_id)

    async def get(self, sku_id: int) -> str | None:
        await self._ensure_loaded()
        if sku_id in self._cache:
            return self._cache[sku_id]
        return await self._resolve(sku_id)

    async def warm(self, sku_ids: Iterable[int]) -> None:
        """Make ``lookup`` answer for every id in ``sku_ids``."""
        await self._ensure_loaded()
        for sku_id in sku_ids:
            if sku_id not in self._cache:
                await self._resolve(sku_id)

    async def _resolve(self, sku_id: int) -> str | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PricebookItemModel.cross_sale_group).where(
                    PricebookItemModel.sku_id == sku_id
                )
            )
            group = result.scalar_one_or_none()

        self._cache[sku_id] = group
        return group

    async def _ensure_loaded(self) -> None:
        if self.is_fresh:
            return
        if self._failed_at is not None and self.clock() - self._failed_at < self.retry_seconds:
            return

        logger.info("Loading cross-sale group cache")
        loaded: dict[int, str | None] = {}
        offset = 0
        try:
            async with self.session_factory() as session:
                while True:
                    result = await session.execute(
                        select(PricebookItemModel.sku_id, PricebookItemModel.cross_sale_group)
                        .where(PricebookItemModel.cross_sale_group.is_not(None))
                        .order_by(PricebookItemModel.sku_id)
                        .limit(self.page_size)
                        .offset(offset)
                    )
                    rows = result.all()
                    loaded.update({sku_id: group for sku_id, group in rows})
                    if len(rows) < self.page_size:
                        break
                    offset += self.page_size
        except Exception as e:
            logger.error(f"Failed to load cross-sale group cache, keeping {len(self._cache)} cached entries: {e}")
            self._failed_at = self.clock()
            return

        self._cache = loaded
        self._loaded_at = self.clock()
        self._failed_at = None
        self._last_loaded = datetime.now(timezone.utc)
        logger.info(f"Loaded {len(loaded)} items with cross-sale groups into cache")
