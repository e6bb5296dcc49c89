"""Manual trigger routes.

Routes:
- POST /poll/run        - Run one live poll now (ignores the polling flag)
- POST /pricebook/sync  - Re-sync the pricebook and refresh classifications
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.config import AppConfig
from shoutout.integration.servicetitan import ServiceTitanClient
from shoutout.notifications.celebrations import make_celebrate_hook
from shoutout.pipeline.classification_cache import ClassificationCache
from shoutout.pipeline.jobs import run_poll, sync_pricebook
from shoutout.web.dependencies import (
    get_app_config,
    get_chat_http,
    get_classification_cache,
    get_db_session_factory,
    get_servicetitan_client,
)

router = APIRouter(tags=["sync"])


@router.post("/poll/run")
async def trigger_poll(
    dry_run: bool = Query(default=False),
    config: AppConfig = Depends(get_app_config),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    client: ServiceTitanClient = Depends(get_servicetitan_client),
    cache: ClassificationCache = Depends(get_classification_cache),
    http: httpx.AsyncClient | None = Depends(get_chat_http),
):
    summary = await run_poll(
        session_factory,
        client,
        config,
        celebrate=make_celebrate_hook(session_factory, http, config.notifications.timeout_seconds),
        classifications=cache,
        force=True,
        dry_run=dry_run,
    )
    return {"success": summary.success, **summary.as_dict()}


@router.post("/pricebook/sync")
async def trigger_pricebook_sync(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    client: ServiceTitanClient = Depends(get_servicetitan_client),
    cache: ClassificationCache = Depends(get_classification_cache),
):
    stats = await sync_pricebook(session_factory, client, cache)
    return {"success": True, **stats, "cache": cache.stats()}
