"""Chat webhook routes.

Routes:
- GET    /webhooks           - List webhooks with delivery stats
- GET    /webhooks/{id}      - One webhook
- POST   /webhooks           - Create a webhook (sends a test message first)
- POST   /webhooks/{id}/test - Send a test message
- PATCH  /webhooks/{id}      - Update name, url, tags or is_active
- DELETE /webhooks/{id}      - Delete; the last active webhook cannot be deleted
"""

from __future__ import annotations

import logging
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.connection import get_db
from shoutout.db.models import WebhookLogModel, WebhookModel
from shoutout.notifications.chat import send_test_message
from shoutout.web.dependencies import get_chat_http
from shoutout.web.models import (
    DeliveryStats,
    WebhookCreate,
    WebhookOut,
    WebhookUpdate,
    WebhookWithStats,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _get_webhook(session: AsyncSession, webhook_id: UUID) -> WebhookModel:
    webhook = await session.get(WebhookModel, webhook_id)
    if webhook is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


async def _delivery_stats(session: AsyncSession, webhook_id: UUID) -> DeliveryStats:
    total = (
        await session.execute(
            select(func.count()).select_from(WebhookLogModel).where(WebhookLogModel.webhook_id == webhook_id)
        )
    ).scalar_one()
    successful = (
        await session.execute(
            select(func.count())
            .select_from(WebhookLogModel)
            .where(WebhookLogModel.webhook_id == webhook_id, WebhookLogModel.status == "success")
        )
    ).scalar_one()
    last = (
        await session.execute(
            select(WebhookLogModel)
            .where(WebhookLogModel.webhook_id == webhook_id)
            .order_by(WebhookLogModel.sent_at.desc(), WebhookLogModel.id.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    return DeliveryStats(
        total_deliveries=total,
        successful_deliveries=successful,
        last_delivery=(
            {"sent_at": last.sent_at.isoformat() if last.sent_at else None, "status": last.status}
            if last
            else None
        ),
    )


@router.get("", response_model=list[WebhookWithStats])
async def list_webhooks(session: AsyncSession = Depends(get_db)):
    result = await session.execute(select(WebhookModel).order_by(WebhookModel.created_at.desc()))
    webhooks = []
    for webhook in result.scalars().all():
        stats = await _delivery_stats(session, webhook.id)
        webhooks.append(
            WebhookWithStats(**WebhookOut.model_validate(webhook).model_dump(), stats=stats)
        )
    return webhooks


@router.get("/{webhook_id}", response_model=WebhookOut)
async def get_webhook(webhook_id: UUID, session: AsyncSession = Depends(get_db)):
    return await _get_webhook(session, webhook_id)


@router.post("", response_model=WebhookOut, status_code=201)
async def create_webhook(
    payload: WebhookCreate,
    session: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient | None = Depends(get_chat_http),
):
    result = await send_test_message(payload.url, http=http)
    if not result.success:
        return JSONResponse(
            status_code=400,
            content={
                "error": result.error,
                "hint": "Webhook test failed. Please verify the URL is correct "
                "and the webhook is active in Google Chat.",
            },
        )

    webhook = WebhookModel(**payload.model_dump())
    session.add(webhook)
    await session.flush()
    await session.refresh(webhook)
    logger.info(f"Created new webhook: {webhook.name}")
    return webhook


@router.post("/{webhook_id}/test")
async def test_existing_webhook(
    webhook_id: UUID,
    session: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient | None = Depends(get_chat_http),
):
    webhook = await _get_webhook(session, webhook_id)
    result = await send_test_message(webhook.url, http=http)
    if not result.success:
        return JSONResponse(status_code=400, content={"success": False, "error": result.error})
    return {"success": True, "message": "Test message sent successfully!"}


@router.patch("/{webhook_id}", response_model=WebhookOut)
async def update_webhook(
    webhook_id: UUID, payload: WebhookUpdate, session: AsyncSession = Depends(get_db)
):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    webhook = await _get_webhook(session, webhook_id)
    for name, value in updates.items():
        setattr(webhook, name, value)
    await session.flush()
    logger.info(f"Updated webhook {webhook_id}")
    return webhook


@router.delete("/{webhook_id}")
async def delete_webhook(webhook_id: UUID, session: AsyncSession = Depends(get_db)):
    webhook = await _get_webhook(session, webhook_id)

    if webhook.is_active:
        active = (
            await session.execute(
                select(func.count()).select_from(WebhookModel).where(WebhookModel.is_active.is_(True))
            )
        ).scalar_one()
        if active <= 1:
            raise HTTPException(
                status_code=400,
                detail="Cannot delete the last active webhook. At least one webhook must remain.",
            )

    await session.delete(webhook)
    logger.info(f"Deleted webhook {webhook_id}")
    return {"success": True, "message": "Webhook deleted"}
