"""Maintenance routes.

Routes:
- POST /clear-test-data - Delete ingested data and logs, keep configuration
"""

from __future__ import annotations

import logging
from datetime import time

from fastapi import APIRouter, Depends
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.config import AppConfig
from shoutout.db.connection import get_db
from shoutout.db.models import EstimateModel, PollLogModel, WebhookLogModel
from shoutout.pipeline.jobs import day_start, today_in
from shoutout.settings import LAST_POLL_TIMESTAMP, write_state
from shoutout.web.dependencies import get_app_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

# Polling restarts from a minute past local midnight
RESET_POLL_TIME = time(0, 1)


@router.post("/clear-test-data")
async def clear_test_data(
    session: AsyncSession = Depends(get_db),
    config: AppConfig = Depends(get_app_config),
):
    """Clears estimates, poll_logs and webhook_logs.

    Messages, GIFs, salespeople, webhooks and settings are preserved.
    """
    deleted = {}
    for label, model in (
        ("estimates", EstimateModel),
        ("poll_logs", PollLogModel),
        ("webhook_logs", WebhookLogModel),
    ):
        deleted[label] = (
            await session.execute(select(func.count()).select_from(model))
        ).scalar_one()
        await session.execute(delete(model))
        logger.info(f"Deleted {deleted[label]} {label}")

    tz_name = config.ingestion.report_timezone
    reset_to = day_start(today_in(tz_name), tz_name, RESET_POLL_TIME)
    await write_state(session, LAST_POLL_TIMESTAMP, reset_to.isoformat())
    logger.info(f"Reset last_poll_timestamp to {reset_to.isoformat()}")

    return {
        "success": True,
        "message": "Testing data cleared successfully",
        "deleted": deleted,
        "last_poll_timestamp": reset_to.isoformat(),
    }
