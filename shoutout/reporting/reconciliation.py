"""Day-by-day reconciliation of stored events against another record set.

Typically the other side is a manually kept ledger of TGLs. Records are
grouped by local calendar day in a fixed timezone (America/New_York by
default), then matched one-to-one within each day.

Matching uses a shared identifier when both records carry one. Otherwise it
falls back to a heuristic: the first word of the person's name and the first
word of the customer name (split on spaces, or on a comma for
"Last, First" entries) must appear, case-insensitively, inside the other
record's names. This is a best-effort aid for an audit, not an exact join.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.models import EstimateModel

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
LEDGER_COLUMNS = ("date", "tech", "customer")


@dataclass
class AuditRecord:
    """One event on either side of a reconciliation."""

    person: str
    customer: str
    sold_at: Optional[datetime] = None
    day: Optional[date] = None
    identifier: Optional[str] = None

    def local_day(self, tz: ZoneInfo) -> Optional[date]:
        if self.day is not None:
            return self.day
        if self.sold_at is None:
            return None
        sold_at = self.sold_at
        if sold_at.tzinfo is None:
            sold_at = sold_at.replace(tzinfo=timezone.utc)
        return sold_at.astimezone(tz).date()


@dataclass
class DayReconciliation:
    day: date
    count_a: int
    count_b: int
    only_in_a: list[AuditRecord] = field(default_factory=list)
    only_in_b: list[AuditRecord] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return self.count_a == self.count_b and not self.only_in_a and not self.only_in_b


@dataclass
class CoverageReport:
    start: date
    end: date
    counts: dict[date, int]
    missing_days: list[date]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _zone(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def group_by_day(
    records: Iterable[AuditRecord], tz: str | ZoneInfo = DEFAULT_TIMEZONE
) -> dict[date, list[AuditRecord]]:
    """Group records by local calendar day; undated records are dropped."""
    zone = _zone(tz)
    grouped: dict[date, list[AuditRecord]] = defaultdict(list)
    for record in records:
        day = record.local_day(zone)
        if day is None:
            logger.warning(f"Skipping record without a date: {record.person} / {record.customer}")
            continue
        grouped[day].append(record)
    return dict(sorted(grouped.items()))


def _first_token(text: str, separator: Optional[str] = None) -> str:
    parts = text.lower().split(separator)
    return parts[0].strip() if parts else ""


def names_match(a: AuditRecord, b: AuditRecord) -> bool:
    """Heuristic match of ``a``'s names inside ``b``'s names."""
    person = _first_token(a.person)
    if not person or person not in b.person.lower():
        return False

    customer = b.customer.lower()
    candidates = {_first_token(a.customer), _first_token(a.customer, ",")}
    return any(token and token in customer for token in candidates)


def records_match(a: AuditRecord, b: AuditRecord) -> bool:
    if a.identifier and b.identifier:
        return a.identifier == b.identifier
    return names_match(a, b)


def reconcile(
    a: Iterable[AuditRecord],
    b: Iterable[AuditRecord],
    tz: str | ZoneInfo = DEFAULT_TIMEZONE,
) -> list[DayReconciliation]:
    """Compare two record sets day by day, pairing records one-to-one."""
    by_day_a = group_by_day(a, tz)
    by_day_b = group_by_day(b, tz)

    results = []
    for day in sorted(set(by_day_a) | set(by_day_b)):
        day_a = by_day_a.get(day, [])
        unmatched_b = list(by_day_b.get(day, []))
        only_in_a = []

        for record in day_a:
            match = next((other for other in unmatched_b if records_match(record, other)), None)
            if match is None:
                only_in_a.append(record)
            else:
                unmatched_b.remove(match)

        results.append(
            DayReconciliation(
                day=day,
                count_a=len(day_a),
                count_b=len(by_day_b.get(day, [])),
                only_in_a=only_in_a,
                only_in_b=unmatched_b,
            )
        )

    return results


def load_ledger(path: str | Path, date_format: str = "%m/%d/%Y") -> list[AuditRecord]:
    """Read a manually kept ledger CSV with ``date,time,tech,customer`` columns.

    Raises:
        ValueError: If a required column is missing
    """
    df = pd.read_csv(path, dtype=str).fillna("")
    df.columns = [column.strip().lower() for column in df.columns]

    missing = [column for column in LEDGER_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"Ledger is missing column(s): {', '.join(missing)}")

    days = pd.to_datetime(df["date"].str.strip(), format=date_format)

    records = [
        AuditRecord(person=row.tech.strip(), customer=row.customer.strip(), day=day.date())
        for row, day in zip(df.itertuples(index=False), days)
    ]
    logger.info(f"Loaded {len(records)} ledger entries from {path}")
    return records


async def load_stored_events(
    session: AsyncSession,
    start: date,
    end: date,
    kind: str = "tgl",
    tz: str | ZoneInfo = DEFAULT_TIMEZONE,
) -> list[AuditRecord]:
    """Stored estimates sold between ``start`` and ``end`` (local days, inclusive).

    ``kind`` is ``"tgl"``, ``"big_sale"`` or ``"all"``.
    """
    zone = _zone(tz)
    lower = datetime.combine(start, datetime.min.time(), tzinfo=zone).astimezone(timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), datetime.min.time(), tzinfo=zone).astimezone(
        timezone.utc
    )
    stmt = select(EstimateModel).where(EstimateModel.sold_at >= lower, EstimateModel.sold_at < upper)
    if kind == "tgl":
        stmt = stmt.where(EstimateModel.is_tgl.is_(True))
    elif kind == "big_sale":
        stmt = stmt.where(EstimateModel.is_big_sale.is_(True))
    elif kind != "all":
        raise ValueError(f"Unknown event kind: {kind}")

    result = await session.execute(stmt.order_by(EstimateModel.sold_at))
    return [
        AuditRecord(
            person=row.salesperson,
            customer=row.customer_name,
            sold_at=row.sold_at,
            identifier=row.estimate_id,
        )
        for row in result.scalars().all()
    ]


def coverage(
    records: Iterable[AuditRecord],
    start: date,
    end: date,
    tz: str | ZoneInfo = DEFAULT_TIMEZONE,
) -> CoverageReport:
    """Per-day record counts between ``start`` and ``end`` inclusive, plus empty days."""
    grouped = group_by_day(records, tz)
    counts = {}
    day = start
    while day <= end:
        counts[day] = len(grouped.get(day, []))
        day += timedelta(days=1)

    return CoverageReport(
        start=start,
        end=end,
        counts=counts,
        missing_days=[day for day, count in counts.items() if count == 0],
    )
