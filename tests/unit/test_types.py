"""Unit tests for pipeline value types."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from shoutout.pipeline.types import (
    BatchState,
    Estimate,
    IngestSummary,
    UpsertOutcome,
    parse_timestamp,
    to_decimal,
)


class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2026-10-16T15:30:00Z") == datetime(2026, 10, 16, 15, 30, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        parsed = parse_timestamp("2026-10-16T11:30:00-04:00")
        assert parsed == datetime(2026, 10, 16, 15, 30, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_naive_is_treated_as_utc(self):
        assert parse_timestamp("2026-10-16T15:30:00") == datetime(2026, 10, 16, 15, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values(self, value):
        assert parse_timestamp(value) is None


def test_to_decimal_avoids_float_artifacts():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(None) == Decimal("0")


class TestEstimateFromApi:
    def test_parses_payload(self, make_estimate):
        estimate = Estimate.from_api(make_estimate())

        assert estimate.id == "175678075"
        assert estimate.amount == Decimal("1250.0")
        assert estimate.sold_on == datetime(2026, 10, 16, 15, 30, tzinfo=timezone.utc)
        assert estimate.sold_by == 11
        assert estimate.customer_id == 21
        assert estimate.sku_ids == {1, 2}
        assert estimate.items[0].name == "Whole-home filter"
        assert estimate.items[0].total == Decimal("50.0")

    def test_item_without_sku(self):
        estimate = Estimate.from_api({"id": 5, "items": [{"skuName": "Misc", "total": 12}]})

        assert estimate.items[0].sku_id is None
        assert estimate.items[0].name == "Misc"
        assert estimate.sku_ids == set()

    def test_missing_id_is_rejected(self):
        with pytest.raises(ValueError):
            Estimate.from_api({"name": "no id"})


class TestIngestSummary:
    def test_record_counts_outcomes(self):
        summary = IngestSummary(source_name="test")
        for outcome in (
            UpsertOutcome.INSERTED,
            UpsertOutcome.INSERTED,
            UpsertOutcome.UPDATED,
            UpsertOutcome.UNCHANGED,
            UpsertOutcome.FAILED,
        ):
            summary.record(outcome)

        assert summary.inserted == 2
        assert summary.updated == 1
        assert summary.unchanged == 1
        assert summary.errors == 1
        assert summary.processed == 4

    def test_success_only_when_done(self):
        summary = IngestSummary(source_name="test")
        assert not summary.success
        summary.state = BatchState.DONE
        assert summary.success
        assert summary.as_dict()["state"] == "DONE"
