"""Celebration message routes.

Routes:
- GET    /messages      - List messages, newest first (optional ?category=)
- GET    /messages/{id} - One message
- POST   /messages      - Create a message
- PATCH  /messages/{id} - Update category, message_text or is_active
- DELETE /messages/{id} - Delete; the last active message of a category cannot be deleted
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.connection import get_db
from shoutout.db.models import CelebrationMessageModel
from shoutout.notifications.celebrations import CELEBRATION_KINDS
from shoutout.web.models import MessageCreate, MessageOut, MessageUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


async def _get_message(session: AsyncSession, message_id: UUID) -> CelebrationMessageModel:
    message = await session.get(CelebrationMessageModel, message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.get("", response_model=list[MessageOut])
async def list_messages(category: Optional[str] = None, session: AsyncSession = Depends(get_db)):
    query = select(CelebrationMessageModel).order_by(CelebrationMessageModel.created_at.desc())
    if category is not None:
        if category not in CELEBRATION_KINDS:
            raise HTTPException(status_code=400, detail='category must be either "big_sale" or "tgl"')
        query = query.where(CelebrationMessageModel.category == category)
    result = await session.execute(query)
    return result.scalars().all()


@router.get("/{message_id}", response_model=MessageOut)
async def get_message(message_id: UUID, session: AsyncSession = Depends(get_db)):
    return await _get_message(session, message_id)


@router.post("", response_model=MessageOut, status_code=201)
async def create_message(payload: MessageCreate, session: AsyncSession = Depends(get_db)):
    message = CelebrationMessageModel(**payload.model_dump())
    session.add(message)
    await session.flush()
    await session.refresh(message)
    logger.info(f"Created new {message.category} message")
    return message


@router.patch("/{message_id}", response_model=MessageOut)
async def update_message(
    message_id: UUID, payload: MessageUpdate, session: AsyncSession = Depends(get_db)
):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    message = await _get_message(session, message_id)
    for name, value in updates.items():
        setattr(message, name, value)
    await session.flush()
    logger.info(f"Updated message {message_id}")
    return message


@router.delete("/{message_id}")
async def delete_message(message_id: UUID, session: AsyncSession = Depends(get_db)):
    message = await _get_message(session, message_id)

    if message.is_active:
        active = (
            await session.execute(
                select(func.count())
                .select_from(CelebrationMessageModel)
                .where(
                    CelebrationMessageModel.category == message.category,
                    CelebrationMessageModel.is_active.is_(True),
                )
            )
        ).scalar_one()
        if active <= 1:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"Cannot delete the last active {message.category} message. "
                    "At least one message must remain."
                ),
            )

    await session.delete(message)
    logger.info(f"Deleted message {message_id}")
    return {"success": True, "message": "Message deleted"}
