"""Integration tests for poll, backfill, sync and recalculation jobs."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from shoutout.db.models import EstimateModel, PollLogModel, PricebookItemModel, SalespersonModel
from shoutout.errors import UpstreamError
from shoutout.pipeline.attribution import AIR_QUALITY, WATER_QUALITY
from shoutout.pipeline.classification_cache import ClassificationCache
from shoutout.pipeline.jobs import (
    backfill_source,
    day_start,
    recalculate_attribution,
    run_backfill,
    run_poll,
    sync_pricebook,
    sync_salespeople,
    today_in,
)
from shoutout.pipeline.sources import ExportEstimateSource, PagedEstimateSource
from shoutout.pipeline.types import BatchState
from shoutout.settings import LAST_POLL_TIMESTAMP, POLLING_ENABLED, read_state, write_state


async def _enable_polling(session_factory, last_poll: str | None = None) -> None:
    async with session_factory() as session:
        await write_state(session, POLLING_ENABLED, True)
        if last_poll:
            await write_state(session, LAST_POLL_TIMESTAMP, last_poll)
        await session.commit()


async def _poll_logs(session_factory) -> list[PollLogModel]:
    async with session_factory() as session:
        result = await session.execute(select(PollLogModel).order_by(PollLogModel.id))
        return list(result.scalars().all())


class TestDayHelpers:
    def test_day_start_is_local_midnight_in_utc(self):
        start = day_start(date(2026, 10, 16), "America/New_York")
        assert start == datetime(2026, 10, 16, 4, 0, tzinfo=timezone.utc)

    def test_day_start_with_time(self):
        start = day_start(date(2026, 1, 16), "America/New_York", time(0, 1))
        assert start == datetime(2026, 1, 16, 5, 1, tzinfo=timezone.utc)

    def test_today_in_zone(self):
        now = datetime(2026, 10, 17, 2, 0, tzinfo=timezone.utc)
        assert today_in("America/New_York", now) == date(2026, 10, 16)


class TestRunPoll:
    @pytest.mark.asyncio
    async def test_disabled_polling_is_skipped_and_logged(self, session_factory, st_client, fake_st, app_config, make_estimate):
        fake_st.estimates = [make_estimate()]

        summary = await run_poll(session_factory, st_client, app_config)

        assert summary.state == BatchState.DONE
        assert summary.message == "Polling is disabled"
        assert fake_st.requests == []
        [log] = await _poll_logs(session_factory)
        assert log.status == "skipped"

    @pytest.mark.asyncio
    async def test_successful_poll_advances_timestamp(self, session_factory, st_client, fake_st, app_config, make_estimate):
        await _enable_polling(session_factory, "2026-10-16T04:00:00+00:00")
        fake_st.estimates = [make_estimate(estimate_id=1), make_estimate(estimate_id=2)]
        before = datetime.now(timezone.utc)

        summary = await run_poll(session_factory, st_client, app_config)

        assert summary.inserted == 2
        assert fake_st.requests[0].url.params["soldAfter"] == "2026-10-16T04:00:00+00:00"

        [log] = await _poll_logs(session_factory)
        assert log.status == "success"
        assert log.estimates_found == 2
        assert log.estimates_processed == 2

        async with session_factory() as session:
            state = await read_state(session, [LAST_POLL_TIMESTAMP])
        assert datetime.fromisoformat(state[LAST_POLL_TIMESTAMP]) >= before

    @pytest.mark.asyncio
    async def test_first_poll_starts_at_local_midnight(self, session_factory, st_client, fake_st, app_config):
        await _enable_polling(session_factory)

        await run_poll(session_factory, st_client, app_config)

        expected = day_start(today_in("America/New_York"), "America/New_York")
        sold_after = fake_st.requests[0].url.params["soldAfter"]
        assert sold_after == expected.isoformat().replace("+00:00", "Z")

    @pytest.mark.asyncio
    async def test_force_ignores_disabled_flag(self, session_factory, st_client, fake_st, app_config, make_estimate):
        fake_st.estimates = [make_estimate()]

        summary = await run_poll(session_factory, st_client, app_config, force=True)

        assert summary.inserted == 1

    @pytest.mark.asyncio
    async def test_failed_poll_is_logged_and_keeps_timestamp(self, session_factory, st_client, fake_st, app_config):
        await _enable_polling(session_factory, "2026-10-16T04:00:00+00:00")
        fake_st.failures = [400]

        with pytest.raises(UpstreamError):
            await run_poll(session_factory, st_client, app_config)

        [log] = await _poll_logs(session_factory)
        assert log.status == "error"
        assert "400" in log.error_message
        async with session_factory() as session:
            state = await read_state(session, [LAST_POLL_TIMESTAMP])
        assert state[LAST_POLL_TIMESTAMP] == "2026-10-16T04:00:00+00:00"

    @pytest.mark.asyncio
    async def test_dry_run_keeps_timestamp(self, session_factory, st_client, fake_st, app_config, make_estimate):
        await _enable_polling(session_factory, "2026-10-16T04:00:00+00:00")
        fake_st.estimates = [make_estimate()]

        summary = await run_poll(session_factory, st_client, app_config, dry_run=True)

        assert summary.skipped == 1
        async with session_factory() as session:
            state = await read_state(session, [LAST_POLL_TIMESTAMP])
        assert state[LAST_POLL_TIMESTAMP] == "2026-10-16T04:00:00+00:00"

    @pytest.mark.asyncio
    async def test_celebrations_disabled_in_config(self, session_factory, st_client, fake_st, app_config, make_estimate):
        app_config.notifications.enabled = False
        fake_st.estimates = [make_estimate()]
        celebrated = []

        async def celebrate(item):
            celebrated.append(item.estimate.id)

        await run_poll(session_factory, st_client, app_config, celebrate=celebrate, force=True)

        assert celebrated == []


class TestBackfill:
    def test_source_selection(self, st_config):
        client = type("Client", (), {"config": st_config})()

        assert isinstance(
            backfill_source(client, date(2026, 10, 1), date(2026, 10, 2), "export", "America/New_York"),
            ExportEstimateSource,
        )
        paged = backfill_source(client, date(2026, 10, 1), date(2026, 10, 2), "paged", "America/New_York")
        assert isinstance(paged, PagedEstimateSource)
        assert paged.sold_after == datetime(2026, 10, 1, 4, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "start, end, endpoint",
        [
            (date(2026, 10, 2), date(2026, 10, 1), "export"),
            (date(2026, 10, 1), date(2026, 10, 2), "bulk"),
        ],
    )
    def test_invalid_arguments(self, st_config, start, end, endpoint):
        client = type("Client", (), {"config": st_config})()

        with pytest.raises(ValueError):
            backfill_source(client, start, end, endpoint, "America/New_York")

    @pytest.mark.asyncio
    async def test_backfill_uses_overrides_and_marks_provenance(self, session_factory, st_client, fake_st, app_config, make_estimate):
        fake_st.estimates = [
            make_estimate(estimate_id=1, subtotal=9000.0, name="Option A"),
            make_estimate(estimate_id=2, subtotal=10000.01, name="Option A"),
        ]

        summary = await run_backfill(
            session_factory,
            st_client,
            app_config,
            date(2026, 10, 1),
            date(2026, 10, 31),
            threshold=Decimal("10000"),
        )

        assert summary.inserted == 2
        assert summary.big_sale_count == 1
        assert summary.celebrated == 0
        async with session_factory() as session:
            rows = (await session.execute(select(EstimateModel).order_by(EstimateModel.estimate_id))).scalars().all()
        assert [(row.estimate_id, row.is_big_sale, row.source) for row in rows] == [
            ("1", False, "backfill"),
            ("2", True, "backfill"),
        ]
        assert await _poll_logs(session_factory) == []


class TestSyncPricebook:
    @pytest.mark.asyncio
    async def test_upserts_all_item_types_and_refreshes_cache(self, session_factory, st_client, fake_st):
        fake_st.pricebook["materials"] = [
            {"id": 1, "code": "FLT-1", "displayName": "Filter", "crossSaleGroup": WATER_QUALITY, "price": 50, "cost": 20},
            {"id": 2, "code": "PIPE", "displayName": "Pipe", "crossSaleGroup": "", "price": 5, "cost": 1},
        ]
        fake_st.pricebook["equipment"] = [
            {"id": 3, "code": "UV-1", "displayName": "UV light", "crossSaleGroup": AIR_QUALITY, "price": 900, "cost": 400},
        ]
        fake_st.pricebook["services"] = [{"id": 4, "code": "TUNE", "displayName": "Tune-up", "price": 99}]
        cache = ClassificationCache(session_factory)

        stats = await sync_pricebook(session_factory, st_client, cache)

        assert stats == {
            "fetched": 4,
            "inserted": 4,
            "updated": 0,
            "failed": 0,
            "water_quality": 1,
            "air_quality": 1,
        }
        assert cache.lookup(1) == WATER_QUALITY
        assert cache.lookup(3) == AIR_QUALITY

        async with session_factory() as session:
            rows = (await session.execute(select(PricebookItemModel).order_by(PricebookItemModel.sku_id))).scalars().all()
        assert [row.sku_type for row in rows] == ["Material", "Material", "Equipment", "Service"]
        assert rows[1].cross_sale_group is None

    @pytest.mark.asyncio
    async def test_second_sync_updates(self, session_factory, st_client, fake_st):
        fake_st.pricebook["materials"] = [{"id": 1, "code": "FLT-1", "crossSaleGroup": None, "price": 50}]
        await sync_pricebook(session_factory, st_client)

        fake_st.pricebook["materials"] = [{"id": 1, "code": "FLT-1", "crossSaleGroup": WATER_QUALITY, "price": 55}]
        stats = await sync_pricebook(session_factory, st_client)

        assert stats["inserted"] == 0
        assert stats["updated"] == 1
        async with session_factory() as session:
            [row] = (await session.execute(select(PricebookItemModel))).scalars().all()
        assert row.cross_sale_group == WATER_QUALITY
        assert row.price == Decimal("55.00")


class TestSyncSalespeople:
    @pytest.mark.asyncio
    async def test_skips_nameless_and_preserves_active_flag(self, session_factory, st_client, fake_st):
        fake_st.technicians = {
            11: {"id": 11, "name": "Jane Smith"},
            12: {"id": 12, "name": ""},
        }
        first = await sync_salespeople(session_factory, st_client)
        assert first == {"fetched": 2, "inserted": 1, "updated": 0, "skipped": 1, "failed": 0}

        async with session_factory() as session:
            [person] = (await session.execute(select(SalespersonModel))).scalars().all()
            person.is_active = False
            await session.commit()

        fake_st.technicians[11] = {"id": 11, "name": "Jane Smith-Lee"}
        second = await sync_salespeople(session_factory, st_client)
        assert second["updated"] == 1

        async with session_factory() as session:
            [person] = (await session.execute(select(SalespersonModel))).scalars().all()
        assert person.name == "Jane Smith-Lee"
        assert person.is_active is False


class TestRecalculateAttribution:
    @pytest.mark.asyncio
    async def test_rewrites_attribution_only(self, session_factory, st_client, fake_st, app_config, make_estimate, add_pricebook_item):
        fake_st.estimates = [make_estimate()]
        await run_poll(session_factory, st_client, app_config, force=True)

        async with session_factory() as session:
            [row] = (await session.execute(select(EstimateModel))).scalars().all()
        assert not row.has_water_quality

        # SKU 1 is classified after the estimate was ingested
        await add_pricebook_item(1, WATER_QUALITY)
        cache = ClassificationCache(session_factory)

        stats = await recalculate_attribution(session_factory, cache)

        assert stats["processed"] == 1
        assert stats["updated"] == 1
        async with session_factory() as session:
            [updated] = (await session.execute(select(EstimateModel))).scalars().all()
        assert updated.has_water_quality
        assert updated.water_quality_amount == Decimal("50.00")
        assert updated.salesperson == row.salesperson
        assert updated.processed_at == row.processed_at

    @pytest.mark.asyncio
    async def test_unchanged_when_nothing_new(self, session_factory, st_client, fake_st, app_config, make_estimate):
        fake_st.estimates = [make_estimate()]
        await run_poll(session_factory, st_client, app_config, force=True)

        stats = await recalculate_attribution(session_factory, ClassificationCache(session_factory))

        assert stats["unchanged"] == 1
        assert stats["updated"] == 0
