"""Polling status routes.

Routes:
- GET   /poll-status - Polling flag, interval, recent logs and 24h stats
- PATCH /poll-status - Turn polling on or off (the change is logged)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.config import AppConfig
from shoutout.db.connection import get_db
from shoutout.db.models import PollLogModel
from shoutout.pipeline.types import parse_timestamp
from shoutout.settings import POLLING_ENABLED, load_settings, write_state
from shoutout.web.dependencies import get_app_config
from shoutout.web.models import PollLogOut, PollToggle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["polling"])

RECENT_LOG_LIMIT = 20


def summarize_logs(logs: list[PollLogModel]) -> dict:
    """24-hour polling statistics."""
    total = len(logs)
    successful = sum(1 for log in logs if log.status == "success")
    return {
        "total_polls_24h": total,
        "successful_polls_24h": successful,
        "failed_polls_24h": sum(1 for log in logs if log.status == "error"),
        "skipped_polls_24h": sum(1 for log in logs if log.status == "skipped"),
        "total_estimates_24h": sum(log.estimates_processed or 0 for log in logs),
        "average_duration_ms": round(sum(log.duration_ms or 0 for log in logs) / total) if total else 0,
        "success_rate_24h": round(successful / total * 100) if total else 0,
    }


@router.get("/poll-status")
async def poll_status(
    session: AsyncSession = Depends(get_db),
    config: AppConfig = Depends(get_app_config),
):
    settings = await load_settings(
        session,
        config.ingestion.default_big_sale_threshold,
        config.ingestion.default_tgl_option_name,
    )

    next_poll = None
    if settings.polling_enabled and settings.last_poll_timestamp:
        last_poll = parse_timestamp(settings.last_poll_timestamp)
        next_poll = (last_poll + timedelta(minutes=settings.polling_interval_minutes)).isoformat()

    recent = (
        await session.execute(
            select(PollLogModel)
            .order_by(PollLogModel.created_at.desc(), PollLogModel.id.desc())
            .limit(RECENT_LOG_LIMIT)
        )
    ).scalars().all()

    since = datetime.now(timezone.utc) - timedelta(hours=24)
    last_day = (
        await session.execute(select(PollLogModel).where(PollLogModel.created_at >= since))
    ).scalars().all()

    return {
        "polling_enabled": settings.polling_enabled,
        "polling_interval_minutes": settings.polling_interval_minutes,
        "last_poll_timestamp": settings.last_poll_timestamp,
        "next_poll_estimate": next_poll,
        "logs": [PollLogOut.model_validate(log).model_dump(mode="json") for log in recent],
        "stats": summarize_logs(list(last_day)),
    }


@router.patch("/poll-status")
async def toggle_polling(payload: PollToggle, session: AsyncSession = Depends(get_db)):
    enabled = payload.polling_enabled
    await write_state(session, POLLING_ENABLED, enabled)

    state = "enabled" if enabled else "disabled"
    session.add(
        PollLogModel(
            status=state,
            estimates_found=0,
            estimates_processed=0,
            duration_ms=0,
            error_message=f"Polling {state} via admin API",
        )
    )
    logger.info(f"Polling {state}")
    return {
        "success": True,
        "polling_enabled": enabled,
        "message": f"Polling {state} successfully",
    }
