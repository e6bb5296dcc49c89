"""Shared dependencies for admin API routes.

Tests replace these through ``app.dependency_overrides``.

Usage:
    from fastapi import Depends
    from shoutout.web.dependencies import get_app_config

    @router.post("/poll/run")
    async def run(config: AppConfig = Depends(get_app_config)):
        ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.config import AppConfig, get_config
from shoutout.db.connection import get_session_factory
from shoutout.integration.servicetitan import ServiceTitanClient
from shoutout.pipeline.classification_cache import ClassificationCache

_classification_cache: ClassificationCache | None = None


def get_app_config() -> AppConfig:
    return get_config()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_classification_cache() -> ClassificationCache:
    """Process-wide cache so manual polls and pricebook syncs share one map."""
    global _classification_cache
    if _classification_cache is None:
        _classification_cache = ClassificationCache(
            get_session_factory(), get_config().ingestion.classification_ttl_seconds
        )
    return _classification_cache


async def get_servicetitan_client() -> AsyncGenerator[ServiceTitanClient, None]:
    async with ServiceTitanClient(get_config().servicetitan) as client:
        yield client


def get_chat_http() -> httpx.AsyncClient | None:
    """HTTP client for chat deliveries; None lets each delivery open its own."""
    return None
