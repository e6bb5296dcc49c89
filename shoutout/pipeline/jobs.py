"""Entry points that wire sources, caches and the ingestion pipeline together.

Used by the CLI and by the manual-trigger routes of the admin API.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.config import AppConfig
from shoutout.db.models import EstimateModel, PollLogModel, PricebookItemModel, SalespersonModel
from shoutout.integration.servicetitan import ServiceTitanClient
from shoutout.pipeline.attribution import calculate_attribution
from shoutout.pipeline.classification_cache import ClassificationCache
from shoutout.pipeline.ingestion import CelebrateHook, IngestionPipeline
from shoutout.pipeline.names import NameResolver
from shoutout.pipeline.sources import (
    PRICEBOOK_TYPES,
    ExportEstimateSource,
    PagedEstimateSource,
    PaginatedSource,
    PricebookSource,
    TechnicianSource,
)
from shoutout.pipeline.types import BatchState, Estimate, IngestSummary, Provenance, to_decimal
from shoutout.pipeline.upserter import EstimateUpserter
from shoutout.settings import (
    LAST_POLL_TIMESTAMP,
    check_config_drift,
    load_settings,
    with_overrides,
    write_state,
)

logger = logging.getLogger(__name__)

ENDPOINTS = ("paged", "export")

PRICEBOOK_TYPE_LABELS = {
    "materials": "Material",
    "equipment": "Equipment",
    "services": "Service",
}

RECALCULATE_PAGE_SIZE = 1000


def day_start(day: date, tz_name: str, at: dt_time = dt_time.min) -> datetime:
    """Local wall-clock time on ``day`` in ``tz_name``, as UTC."""
    return datetime.combine(day, at, tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


def today_in(tz_name: str, now: Optional[datetime] = None) -> date:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


async def _settings_snapshot(session_factory: async_sessionmaker[AsyncSession], config: AppConfig):
    async with session_factory() as session:
        return await load_settings(
            session,
            config.ingestion.default_big_sale_threshold,
            config.ingestion.default_tgl_option_name,
        )


async def _log_poll(
    session_factory: async_sessionmaker[AsyncSession],
    status: str,
    summary: IngestSummary,
    started: float,
    error_message: Optional[str] = None,
) -> None:
    async with session_factory() as session:
        session.add(
            PollLogModel(
                status=status,
                estimates_found=summary.fetched,
                estimates_processed=summary.processed,
                error_count=summary.errors,
                duration_ms=int((time.time() - started) * 1000),
                error_message=error_message,
            )
        )
        await session.commit()


async def run_poll(
    session_factory: async_sessionmaker[AsyncSession],
    client: ServiceTitanClient,
    config: AppConfig,
    celebrate: Optional[CelebrateHook] = None,
    classifications: Optional[ClassificationCache] = None,
    force: bool = False,
    dry_run: bool = False,
) -> IngestSummary:
    """Ingest estimates sold since the last successful poll.

    Skipped (and logged as such) when polling is disabled, unless ``force``.
    The next lower bound is the moment this poll started, stored only after
    the batch completes.
    """
    started = time.time()
    poll_started_at = datetime.now(timezone.utc)
    settings = await _settings_snapshot(session_factory, config)

    if not settings.polling_enabled and not force:
        logger.info("Polling is disabled, skipping")
        summary = IngestSummary(source_name="poll", state=BatchState.DONE, message="Polling is disabled")
        await _log_poll(session_factory, "skipped", summary, started, "Polling is disabled")
        return summary

    tz_name = config.ingestion.report_timezone
    sold_after = settings.last_poll_timestamp or day_start(today_in(tz_name), tz_name)
    logger.info(f"Polling estimates sold after {sold_after}")

    pipeline = IngestionPipeline(
        session_factory,
        PagedEstimateSource(client, sold_after=sold_after),
        NameResolver(client, config.ingestion.name_cache_size),
        classifications
        or ClassificationCache(session_factory, config.ingestion.classification_ttl_seconds),
        settings,
        provenance=Provenance.POLL,
        celebrate=celebrate if config.notifications.enabled else None,
        dry_run=dry_run,
    )

    try:
        summary = await pipeline.run()
    except Exception as e:
        await _log_poll(session_factory, "error", pipeline.summary, started, str(e))
        raise

    if not dry_run:
        async with session_factory() as session:
            await write_state(session, LAST_POLL_TIMESTAMP, poll_started_at.isoformat())
            await session.commit()

    await _log_poll(session_factory, "success", summary, started)
    return summary


def backfill_source(
    client: ServiceTitanClient,
    start: date,
    end: date,
    endpoint: str,
    tz_name: str,
) -> PaginatedSource:
    if endpoint not in ENDPOINTS:
        raise ValueError(f"Unknown endpoint {endpoint!r}; expected one of {', '.join(ENDPOINTS)}")
    if end < start:
        raise ValueError("end date must not be before start date")

    if endpoint == "export":
        return ExportEstimateSource(client, sold_on_or_after=start, sold_on_or_before=end)
    return PagedEstimateSource(
        client,
        sold_after=day_start(start, tz_name),
        sold_before=day_start(end + timedelta(days=1), tz_name) - timedelta(microseconds=1),
    )


async def run_backfill(
    session_factory: async_sessionmaker[AsyncSession],
    client: ServiceTitanClient,
    config: AppConfig,
    start: date,
    end: date,
    endpoint: str = "export",
    threshold: Optional[Decimal] = None,
    marker: Optional[str] = None,
    classifications: Optional[ClassificationCache] = None,
    dry_run: bool = False,
) -> IngestSummary:
    """Re-ingest a date range. Backfilled rows never trigger celebrations.

    Per-run ``threshold`` / ``marker`` overrides are honoured but reported as
    configuration drift when they differ from the live settings.
    """
    settings = await _settings_snapshot(session_factory, config)
    check_config_drift(settings, threshold, marker)
    effective = with_overrides(settings, threshold, marker)

    source = backfill_source(client, start, end, endpoint, config.ingestion.report_timezone)
    logger.info(f"Backfilling {start} to {end} via {endpoint} endpoint")

    pipeline = IngestionPipeline(
        session_factory,
        source,
        NameResolver(client, config.ingestion.name_cache_size),
        classifications
        or ClassificationCache(session_factory, config.ingestion.classification_ttl_seconds),
        effective,
        provenance=Provenance.BACKFILL,
        dry_run=dry_run,
    )
    return await pipeline.run()


def _pricebook_fields(item: dict, item_type: str) -> dict[str, Any]:
    return {
        "sku_code": item.get("code"),
        "sku_type": PRICEBOOK_TYPE_LABELS[item_type],
        "display_name": item.get("displayName"),
        "description": item.get("description"),
        "cross_sale_group": item.get("crossSaleGroup") or None,
        "price": to_decimal(item.get("price")),
        "cost": to_decimal(item.get("cost")),
        "active": item.get("active", True),
        "raw_data": item,
    }


async def sync_pricebook(
    session_factory: async_sessionmaker[AsyncSession],
    client: ServiceTitanClient,
    classifications: Optional[ClassificationCache] = None,
) -> dict[str, int]:
    """Upsert every material, equipment and service item by ``sku_id``.

    Refreshes the classification cache afterwards so attribution sees new
    cross-sale groups immediately.
    """
    stats = {"fetched": 0, "inserted": 0, "updated": 0, "failed": 0, "water_quality": 0, "air_quality": 0}

    async with session_factory() as session:
        for item_type in PRICEBOOK_TYPES:
            items = await PricebookSource(client, item_type).fetch_all()
            logger.info(f"Fetched {len(items)} pricebook {item_type}")
            stats["fetched"] += len(items)

            for item in items:
                try:
                    sku_id = int(item["id"])
                    fields = _pricebook_fields(item, item_type)
                    existing = (
                        await session.execute(
                            select(PricebookItemModel).where(PricebookItemModel.sku_id == sku_id)
                        )
                    ).scalar_one_or_none()

                    now = datetime.now(timezone.utc)
                    if existing is None:
                        session.add(PricebookItemModel(sku_id=sku_id, last_synced_at=now, **fields))
                        stats["inserted"] += 1
                    else:
                        for name, value in fields.items():
                            setattr(existing, name, value)
                        existing.last_synced_at = now
                        stats["updated"] += 1
                    await session.commit()

                except Exception as e:
                    await session.rollback()
                    logger.error(f"Failed to sync pricebook item {item.get('id')}: {e}")
                    stats["failed"] += 1
                    continue

                if fields["cross_sale_group"] == "WATER QUALITY":
                    stats["water_quality"] += 1
                elif fields["cross_sale_group"] == "AIR QUALITY":
                    stats["air_quality"] += 1

    if classifications is not None:
        await classifications.refresh()

    logger.info(
        f"Pricebook sync complete: {stats['inserted']} new, {stats['updated']} updated, "
        f"{stats['failed']} failed"
    )
    return stats


async def sync_salespeople(
    session_factory: async_sessionmaker[AsyncSession],
    client: ServiceTitanClient,
) -> dict[str, int]:
    """Upsert named technicians by ``technician_id``.

    New technicians start active; an administrator's ``is_active`` choice on
    an existing row is left alone.
    """
    technicians = await TechnicianSource(client).fetch_all()
    logger.info(f"Fetched {len(technicians)} technicians from ServiceTitan")
    stats = {"fetched": len(technicians), "inserted": 0, "updated": 0, "skipped": 0, "failed": 0}

    async with session_factory() as session:
        for tech in technicians:
            name = (tech.get("name") or "").strip()
            if not name or tech.get("id") is None:
                stats["skipped"] += 1
                continue

            try:
                technician_id = int(tech["id"])
                existing = (
                    await session.execute(
                        select(SalespersonModel).where(SalespersonModel.technician_id == technician_id)
                    )
                ).scalar_one_or_none()

                now = datetime.now(timezone.utc)
                if existing is None:
                    session.add(
                        SalespersonModel(technician_id=technician_id, name=name, is_active=True, updated_at=now)
                    )
                    stats["inserted"] += 1
                else:
                    existing.name = name
                    existing.updated_at = now
                    stats["updated"] += 1
                await session.commit()

            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to sync technician {tech.get('id')}: {e}")
                stats["failed"] += 1

    if stats["skipped"]:
        logger.info(f"Skipped {stats['skipped']} technicians with no name")
    return stats


async def recalculate_attribution(
    session_factory: async_sessionmaker[AsyncSession],
    classifications: ClassificationCache,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict[str, int]:
    """Recompute cross-sale attribution from stored ``raw_data``.

    Only the attribution columns are written; names, flags and provenance
    stay as ingested.
    """
    stmt = select(EstimateModel.estimate_id, EstimateModel.raw_data).order_by(EstimateModel.id)
    if start is not None:
        stmt = stmt.where(EstimateModel.sold_at >= start)
    if end is not None:
        stmt = stmt.where(EstimateModel.sold_at < end)

    processed = 0
    offset = 0
    async with session_factory() as read_session, session_factory() as write_session:
        upserter = EstimateUpserter(write_session)
        while True:
            rows = (
                await read_session.execute(stmt.limit(RECALCULATE_PAGE_SIZE).offset(offset))
            ).all()

            for estimate_id, raw_data in rows:
                try:
                    estimate = Estimate.from_api(raw_data or {"id": estimate_id})
                    await classifications.warm(estimate.sku_ids)
                    attribution = calculate_attribution(estimate, classifications.lookup)
                except Exception as e:
                    logger.error(f"Failed to recalculate estimate {estimate_id}: {e}")
                    upserter.stats["failed"] += 1
                    continue
                await upserter.update_attribution(estimate_id, attribution)
                processed += 1

            if len(rows) < RECALCULATE_PAGE_SIZE:
                break
            offset += RECALCULATE_PAGE_SIZE

    upserter.log_summary()
    return {"processed": processed, **upserter.stats}
