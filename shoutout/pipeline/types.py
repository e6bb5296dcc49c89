"""Type definitions for pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Provenance(str, Enum):
    """Where an ingested row came from."""

    POLL = "poll"
    BACKFILL = "backfill"


class BatchState(str, Enum):
    """Lifecycle of one ingestion batch."""

    PENDING = "PENDING"
    FETCHING = "FETCHING"
    ENRICHING = "ENRICHING"
    CLASSIFYING = "CLASSIFYING"
    UPSERTING = "UPSERTING"
    DONE = "DONE"
    FAILED = "FAILED"


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"  # dry run


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a ServiceTitan ISO-8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


@dataclass
class EstimateItem:
    """One line item of an estimate."""

    sku_id: Optional[int]
    name: str
    total: Decimal
    quantity: Decimal = Decimal("1")

    @classmethod
    def from_api(cls, data: dict) -> EstimateItem:
        sku = data.get("sku") or {}
        sku_id = sku.get("id")
        name = (
            sku.get("displayName")
            or sku.get("name")
            or data.get("skuName")
            or (f"SKU #{sku_id}" if sku_id else "")
        )
        quantity = data.get("qty") or data.get("quantity") or 1
        return cls(
            sku_id=int(sku_id) if sku_id else None,
            name=name,
            total=to_decimal(data.get("total")),
            quantity=to_decimal(quantity),
        )


@dataclass
class Estimate:
    """Sold estimate as returned by the ServiceTitan sales API.

    ``id`` is the natural key used for every upsert.
    """

    id: str
    sold_on: Optional[datetime]
    subtotal: Decimal
    sold_by: Optional[int]
    customer_id: Optional[int]
    name: str = ""
    items: list[EstimateItem] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return self.subtotal

    @property
    def sku_ids(self) -> set[int]:
        return {item.sku_id for item in self.items if item.sku_id is not None}

    @classmethod
    def from_api(cls, data: dict) -> Estimate:
        """Build from an API payload.

        Raises:
            ValueError: If the payload has no id
        """
        estimate_id = data.get("id")
        if estimate_id in (None, ""):
            raise ValueError("Estimate payload has no id")

        return cls(
            id=str(estimate_id),
            sold_on=parse_timestamp(data.get("soldOn")),
            subtotal=to_decimal(data.get("subtotal")),
            sold_by=data.get("soldBy"),
            customer_id=data.get("customerId"),
            name=data.get("name") or "",
            items=[EstimateItem.from_api(item) for item in data.get("items") or []],
            raw=data,
        )


@dataclass
class IngestSummary:
    """Result of one ingestion run."""

    source_name: str
    state: BatchState = BatchState.PENDING
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    tgl_count: int = 0
    big_sale_count: int = 0
    celebrated: int = 0
    message: str = ""
    error_details: Optional[dict] = None
    duration_seconds: float = 0.0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == BatchState.DONE

    @property
    def processed(self) -> int:
        return self.inserted + self.updated + self.unchanged + self.skipped

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome == UpsertOutcome.INSERTED:
            self.inserted += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1
        elif outcome == UpsertOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome == UpsertOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def as_dict(self) -> dict:
        return {
            "source": self.source_name,
            "state": self.state.value,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": self.errors,
            "tgl_count": self.tgl_count,
            "big_sale_count": self.big_sale_count,
            "celebrated": self.celebrated,
            "message": self.message,
            "duration_seconds": round(self.duration_seconds, 3),
        }
