"""Runtime settings routes.

Routes:
- GET   /settings - Current editable settings
- PATCH /settings - Update one or more settings (all-or-nothing validation)
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.config import AppConfig
from shoutout.db.connection import get_db
from shoutout.settings import load_settings, update_settings
from shoutout.web.dependencies import get_app_config

router = APIRouter(tags=["settings"])


@router.get("/settings")
async def get_settings(
    session: AsyncSession = Depends(get_db),
    config: AppConfig = Depends(get_app_config),
):
    settings = await load_settings(
        session,
        config.ingestion.default_big_sale_threshold,
        config.ingestion.default_tgl_option_name,
    )
    return settings.to_api()


@router.patch("/settings")
async def patch_settings(
    updates: Optional[dict[str, Any]] = Body(default=None),
    session: AsyncSession = Depends(get_db),
):
    results = await update_settings(session, updates or {})
    return {"success": True, "updated": results}
