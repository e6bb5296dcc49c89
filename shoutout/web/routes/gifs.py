"""Celebration GIF routes.

Routes:
- GET    /gifs      - List all GIFs, newest first
- GET    /gifs/{id} - One GIF
- POST   /gifs      - Create a GIF
- PATCH  /gifs/{id} - Update name, url, tags or is_active
- DELETE /gifs/{id} - Delete a GIF; the last active one cannot be deleted
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.connection import get_db
from shoutout.db.models import CelebrationGifModel
from shoutout.web.models import GifCreate, GifOut, GifUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gifs", tags=["gifs"])

UPDATABLE_FIELDS = ["name", "url", "tags", "is_active"]


async def _get_gif(session: AsyncSession, gif_id: UUID) -> CelebrationGifModel:
    gif = await session.get(CelebrationGifModel, gif_id)
    if gif is None:
        raise HTTPException(status_code=404, detail="GIF not found")
    return gif


@router.get("", response_model=list[GifOut])
async def list_gifs(session: AsyncSession = Depends(get_db)):
    result = await session.execute(
        select(CelebrationGifModel).order_by(CelebrationGifModel.created_at.desc())
    )
    return result.scalars().all()


@router.get("/{gif_id}", response_model=GifOut)
async def get_gif(gif_id: UUID, session: AsyncSession = Depends(get_db)):
    return await _get_gif(session, gif_id)


@router.post("", response_model=GifOut, status_code=201)
async def create_gif(payload: GifCreate, session: AsyncSession = Depends(get_db)):
    gif = CelebrationGifModel(**payload.model_dump())
    session.add(gif)
    await session.flush()
    await session.refresh(gif)
    logger.info(f"Created new GIF: {gif.name}")
    return gif


@router.patch("/{gif_id}", response_model=GifOut)
async def update_gif(gif_id: UUID, payload: GifUpdate, session: AsyncSession = Depends(get_db)):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    gif = await _get_gif(session, gif_id)
    for name, value in updates.items():
        setattr(gif, name, value)
    await session.flush()
    logger.info(f"Updated GIF {gif_id}")
    return gif


@router.delete("/{gif_id}")
async def delete_gif(gif_id: UUID, session: AsyncSession = Depends(get_db)):
    gif = await _get_gif(session, gif_id)

    if gif.is_active:
        active = (
            await session.execute(
                select(func.count())
                .select_from(CelebrationGifModel)
                .where(CelebrationGifModel.is_active.is_(True))
            )
        ).scalar_one()
        if active <= 1:
            raise HTTPException(
                status_code=400,
                detail="Cannot delete the last active GIF. At least one GIF must remain.",
            )

    await session.delete(gif)
    logger.info(f"Deleted GIF {gif_id}")
    return {"success": True, "message": "GIF deleted"}
