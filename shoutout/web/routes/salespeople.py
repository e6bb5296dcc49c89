"""Salespeople routes.

Rows are created by ``shoutout sync-salespeople``; the admin API only
reads them and edits the fields ServiceTitan does not own.

Routes:
- GET   /salespeople                  - List salespeople by name (optional ?active=)
- GET   /salespeople/{technician_id}  - One salesperson
- PATCH /salespeople/{technician_id}  - Update business_unit or is_active
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.connection import get_db
from shoutout.db.models import SalespersonModel
from shoutout.web.models import SalespersonOut, SalespersonUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/salespeople", tags=["salespeople"])


async def _get_salesperson(session: AsyncSession, technician_id: int) -> SalespersonModel:
    salesperson = (
        await session.execute(
            select(SalespersonModel).where(SalespersonModel.technician_id == technician_id)
        )
    ).scalar_one_or_none()
    if salesperson is None:
        raise HTTPException(status_code=404, detail="Salesperson not found")
    return salesperson


@router.get("", response_model=list[SalespersonOut])
async def list_salespeople(active: Optional[bool] = None, session: AsyncSession = Depends(get_db)):
    query = select(SalespersonModel).order_by(SalespersonModel.name)
    if active is not None:
        query = query.where(SalespersonModel.is_active.is_(active))
    result = await session.execute(query)
    return result.scalars().all()


@router.get("/{technician_id}", response_model=SalespersonOut)
async def get_salesperson(technician_id: int, session: AsyncSession = Depends(get_db)):
    return await _get_salesperson(session, technician_id)


@router.patch("/{technician_id}", response_model=SalespersonOut)
async def update_salesperson(
    technician_id: int, payload: SalespersonUpdate, session: AsyncSession = Depends(get_db)
):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    salesperson = await _get_salesperson(session, technician_id)
    for name, value in updates.items():
        setattr(salesperson, name, value)
    salesperson.updated_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info(f"Updated salesperson {technician_id}: {updates}")
    return salesperson
