"""Idempotent ingestion of sold estimates.

One batch moves through FETCHING → ENRICHING → CLASSIFYING → UPSERTING →
DONE. A fetch or authentication failure moves it to FAILED and propagates;
anything that goes wrong with a single record is logged with its id,
counted, and the batch carries on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.pipeline.attribution import calculate_attribution
from shoutout.pipeline.classification_cache import ClassificationCache
from shoutout.pipeline.events import EventFlags, classify_events
from shoutout.pipeline.names import NameResolver, customer_placeholder, technician_placeholder
from shoutout.pipeline.sources import PaginatedSource
from shoutout.pipeline.types import (
    BatchState,
    Estimate,
    IngestSummary,
    Provenance,
    UpsertOutcome,
)
from shoutout.pipeline.upserter import EstimateUpserter, build_record
from shoutout.settings import AppSettings

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


@dataclass
class PreparedEstimate:
    """An estimate carried through the batch with everything derived from it."""

    estimate: Estimate
    salesperson: str = ""
    customer_name: str = ""
    flags: Optional[EventFlags] = None
    record: Optional[dict[str, Any]] = None


# Called for each newly inserted TGL / big-sale row on the live path
CelebrateHook = Callable[[PreparedEstimate], Awaitable[Any]]


class IngestionPipeline:
    """Fetch, enrich, classify and upsert one batch of estimates.

    Usage:
        pipeline = IngestionPipeline(factory, source, names, cache, settings, Provenance.POLL)
        summary = await pipeline.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source: PaginatedSource,
        names: NameResolver,
        classifications: ClassificationCache,
        settings: AppSettings,
        provenance: Provenance = Provenance.POLL,
        celebrate: Optional[CelebrateHook] = None,
        dry_run: bool = False,
    ):
        self.session_factory = session_factory
        self.source = source
        self.names = names
        self.classifications = classifications
        self.settings = settings
        self.provenance = provenance
        self.celebrate = celebrate if provenance == Provenance.POLL else None
        self.dry_run = dry_run
        self.summary = IngestSummary(source_name=source.source_name)

    @property
    def state(self) -> BatchState:
        return self.summary.state

    def _transition(self, state: BatchState) -> None:
        logger.info(
            f"{self.summary.source_name}: {self.summary.state.value} -> {state.value}"
        )
        self.summary.state = state

    def _record_error(self, estimate_id: str, stage: str, error: Exception) -> None:
        logger.error(f"Estimate {estimate_id} failed during {stage}: {error}")
        self.summary.errors += 1
        self.summary.failed_ids.append(estimate_id)

    async def run(self) -> IngestSummary:
        """Execute the batch.

        Raises:
            AuthenticationError: Credentials rejected while fetching
            UpstreamError: ServiceTitan failed after retries
        """
        start_time = time.time()
        try:
            raw_records = await self._fetch()
            batch = await self._enrich(self._parse(raw_records))
            batch = await self._classify(batch)
            await self._upsert(batch)
            self._transition(BatchState.DONE)

        except Exception as e:
            self._transition(BatchState.FAILED)
            self.summary.message = f"Ingestion failed: {e}"
            self.summary.error_details = {
                "error_type": type(e).__name__,
                "error_message": str(e),
            }
            logger.error(f"Ingestion failed for {self.summary.source_name}: {e}")
            raise

        finally:
            self.summary.duration_seconds = time.time() - start_time

        self.summary.message = (
            f"Processed {self.summary.fetched} estimates: "
            f"{self.summary.inserted} new, "
            f"{self.summary.updated} updated, "
            f"{self.summary.unchanged} unchanged, "
            f"{self.summary.errors} failed"
        )
        logger.info(f"{self.summary.source_name}: {self.summary.message}")
        return self.summary

    async def _fetch(self) -> list[dict]:
        self._transition(BatchState.FETCHING)
        records = await self.source.fetch_all()
        self.summary.fetched = len(records)
        logger.info(f"Fetched {len(records)} estimates from {self.source.source_name}")
        return records

    def _parse(self, raw_records: list[dict]) -> list[PreparedEstimate]:
        batch = []
        for raw in raw_records:
            try:
                batch.append(PreparedEstimate(estimate=Estimate.from_api(raw)))
            except (ValueError, TypeError, ArithmeticError) as e:
                self._record_error(str(raw.get("id", "?")), "parse", e)
        return batch

    async def _enrich(self, batch: list[PreparedEstimate]) -> list[PreparedEstimate]:
        self._transition(BatchState.ENRICHING)
        for item in batch:
            estimate = item.estimate
            try:
                item.salesperson = await self.names.technician(estimate.sold_by)
            except Exception as e:
                logger.warning(f"Technician lookup failed for estimate {estimate.id}: {e}")
                item.salesperson = technician_placeholder(estimate.sold_by)
            try:
                item.customer_name = await self.names.customer(estimate.customer_id)
            except Exception as e:
                logger.warning(f"Customer lookup failed for estimate {estimate.id}: {e}")
                item.customer_name = customer_placeholder(estimate.customer_id)
        return batch

    async def _classify(self, batch: list[PreparedEstimate]) -> list[PreparedEstimate]:
        self._transition(BatchState.CLASSIFYING)
        classified = []
        for item in batch:
            estimate = item.estimate
            try:
                await self.classifications.warm(estimate.sku_ids)
                attribution = calculate_attribution(estimate, self.classifications.lookup)
                item.flags = classify_events(estimate, self.settings)
                item.record = build_record(
                    estimate,
                    item.salesperson,
                    item.customer_name,
                    attribution,
                    item.flags,
                    self.provenance,
                )
            except Exception as e:
                self._record_error(estimate.id, "classification", e)
                continue

            if item.flags.is_tgl:
                self.summary.tgl_count += 1
            if item.flags.is_big_sale:
                self.summary.big_sale_count += 1
            classified.append(item)
        return classified

    async def _upsert(self, batch: list[PreparedEstimate]) -> None:
        self._transition(BatchState.UPSERTING)

        if self.dry_run:
            for item in batch:
                self.summary.record(UpsertOutcome.SKIPPED)
            logger.info(f"Dry run: {len(batch)} estimates classified, nothing written")
            return

        async with self.session_factory() as session:
            upserter = EstimateUpserter(session)
            for index, item in enumerate(batch, start=1):
                outcome = await upserter.upsert(item.record)
                self.summary.record(outcome)
                if outcome == UpsertOutcome.FAILED:
                    self.summary.failed_ids.append(item.estimate.id)
                elif outcome == UpsertOutcome.INSERTED and item.flags.any:
                    await self._celebrate(item)

                if index % PROGRESS_EVERY == 0:
                    logger.info(f"Progress: {index}/{len(batch)} estimates upserted")

            upserter.log_summary()

    async def _celebrate(self, item: PreparedEstimate) -> None:
        if self.celebrate is None:
            return
        try:
            await self.celebrate(item)
            self.summary.celebrated += 1
        except Exception as e:
            logger.error(f"Celebration failed for estimate {item.estimate.id}: {e}")
