"""Idempotent estimate upserts keyed by ``estimate_id``.

Process per record:
1. Look up the stored row by natural key
2. Absent → INSERT
3. Present and unchanged → only ``processed_at`` moves
4. Present and changed → UPDATE the changed columns

Each record commits on its own; a failure rolls back that record only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.models import EstimateModel
from shoutout.pipeline.attribution import AIR_QUALITY, WATER_QUALITY, CategoryMetrics
from shoutout.pipeline.events import EventFlags
from shoutout.pipeline.types import Estimate, Provenance, UpsertOutcome

logger = logging.getLogger(__name__)

# Columns compared to decide between UNCHANGED and UPDATED
SEMANTIC_FIELDS = (
    "salesperson",
    "customer_name",
    "amount",
    "sold_at",
    "option_name",
    "is_tgl",
    "is_big_sale",
    "has_water_quality",
    "water_quality_amount",
    "water_quality_item_count",
    "has_air_quality",
    "air_quality_amount",
    "air_quality_item_count",
    "raw_data",
)

ATTRIBUTION_FIELDS = (
    "has_water_quality",
    "water_quality_amount",
    "water_quality_item_count",
    "has_air_quality",
    "air_quality_amount",
    "air_quality_item_count",
)

CENT = Decimal("0.01")


def attribution_fields(attribution: dict[str, CategoryMetrics]) -> dict[str, Any]:
    water = attribution.get(WATER_QUALITY) or CategoryMetrics()
    air = attribution.get(AIR_QUALITY) or CategoryMetrics()
    return {
        "has_water_quality": water.has_category,
        "water_quality_amount": water.amount,
        "water_quality_item_count": water.item_count,
        "has_air_quality": air.has_category,
        "air_quality_amount": air.amount,
        "air_quality_item_count": air.item_count,
    }


def build_record(
    estimate: Estimate,
    salesperson: str,
    customer_name: str,
    attribution: dict[str, CategoryMetrics],
    flags: EventFlags,
    provenance: Provenance,
) -> dict[str, Any]:
    """Column values for one ``estimates`` row."""
    return {
        "estimate_id": estimate.id,
        "salesperson": salesperson,
        "customer_name": customer_name,
        "amount": estimate.amount,
        "sold_at": estimate.sold_on,
        "option_name": estimate.name,
        "is_tgl": flags.is_tgl,
        "is_big_sale": flags.is_big_sale,
        **attribution_fields(attribution),
        "source": provenance.value,
        "raw_data": estimate.raw,
    }


def _normalize(value: Any) -> Any:
    # SQLite hands back naive datetimes and unscaled decimals
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (Decimal, float)):
        return Decimal(str(value)).quantize(CENT)
    return value


def changed_fields(current: EstimateModel, record: dict[str, Any], fields=SEMANTIC_FIELDS) -> list[str]:
    return [
        name
        for name in fields
        if name in record and _normalize(getattr(current, name)) != _normalize(record[name])
    ]


class EstimateUpserter:
    """Insert-or-update estimates with per-record atomicity."""

    def __init__(self, session: AsyncSession):
        """Initialize upserter with database session.

        Args:
            session: Async session owned by the caller; committed per record
        """
        self.session = session
        self.stats = {
            "inserted": 0,
            "updated": 0,
            "unchanged": 0,
            "failed": 0,
        }

    async def upsert(self, record: dict[str, Any], fields=SEMANTIC_FIELDS) -> UpsertOutcome:
        """Upsert one record and commit it.

        ``source`` is only written on insert: a backfill never relabels a
        polled row.
        """
        estimate_id = record["estimate_id"]
        try:
            result = await self.session.execute(
                select(EstimateModel).where(EstimateModel.estimate_id == estimate_id)
            )
            current = result.scalar_one_or_none()
            now = datetime.now(timezone.utc)

            if current is None:
                self.session.add(EstimateModel(**record, processed_at=now))
                outcome = UpsertOutcome.INSERTED
            else:
                changes = changed_fields(current, record, fields)
                for name in changes:
                    setattr(current, name, record[name])
                current.processed_at = now
                outcome = UpsertOutcome.UPDATED if changes else UpsertOutcome.UNCHANGED
                if changes:
                    logger.info(f"Estimate {estimate_id} changed: {', '.join(changes)}")

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to upsert estimate {estimate_id}: {e}", exc_info=True)
            self.stats["failed"] += 1
            return UpsertOutcome.FAILED

        self.stats[outcome.value] += 1
        return outcome

    async def update_attribution(self, estimate_id: str, attribution: dict[str, CategoryMetrics]) -> UpsertOutcome:
        """Rewrite only the attribution columns of an existing row."""
        record = {"estimate_id": estimate_id, **attribution_fields(attribution)}
        try:
            result = await self.session.execute(
                select(EstimateModel).where(EstimateModel.estimate_id == estimate_id)
            )
            current = result.scalar_one_or_none()
            if current is None:
                raise LookupError(f"Estimate {estimate_id} not found")

            changes = changed_fields(current, record, ATTRIBUTION_FIELDS)
            for name in changes:
                setattr(current, name, record[name])
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to update attribution for {estimate_id}: {e}")
            self.stats["failed"] += 1
            return UpsertOutcome.FAILED

        outcome = UpsertOutcome.UPDATED if changes else UpsertOutcome.UNCHANGED
        self.stats[outcome.value] += 1
        return outcome

    def log_summary(self) -> None:
        logger.info(
            f"Upsert complete: "
            f"{self.stats['inserted']} inserted, "
            f"{self.stats['updated']} updated, "
            f"{self.stats['unchanged']} unchanged, "
            f"{self.stats['failed']} failed"
        )
