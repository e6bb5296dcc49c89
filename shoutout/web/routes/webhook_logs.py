"""Webhook delivery log routes.

Routes:
- GET /webhook-logs?webhook_id=X[&status=success|failed][&limit=N]
      Newest deliveries first (limit defaults to 50, capped at 100) plus
      success/failed totals for the webhook.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.connection import get_db
from shoutout.db.models import WebhookLogModel
from shoutout.web.models import WebhookLogOut, WebhookLogPage, WebhookLogSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook-logs", tags=["webhooks"])

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
DELIVERY_STATUSES = ("success", "failed")


@router.get("", response_model=WebhookLogPage)
async def list_webhook_logs(
    webhook_id: UUID,
    status: Optional[str] = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1),
    session: AsyncSession = Depends(get_db),
):
    query = (
        select(WebhookLogModel)
        .where(WebhookLogModel.webhook_id == webhook_id)
        .order_by(WebhookLogModel.sent_at.desc(), WebhookLogModel.id.desc())
        .limit(min(limit, MAX_LIMIT))
    )
    # Unknown statuses are ignored rather than rejected
    if status in DELIVERY_STATUSES:
        query = query.where(WebhookLogModel.status == status)
    logs = (await session.execute(query)).scalars().all()

    counts = dict(
        (
            await session.execute(
                select(WebhookLogModel.status, func.count())
                .where(WebhookLogModel.webhook_id == webhook_id)
                .group_by(WebhookLogModel.status)
            )
        ).all()
    )
    total = sum(counts.values())
    success = counts.get("success", 0)

    return WebhookLogPage(
        logs=[WebhookLogOut.model_validate(log) for log in logs],
        summary=WebhookLogSummary(
            total=total,
            success=success,
            failed=counts.get("failed", 0),
            success_rate=round(success / total * 100) if total else 0,
        ),
    )
