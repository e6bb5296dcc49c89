"""Runtime settings stored in the ``app_state`` key/value table.

Settings are the single source of truth for event detection (big-sale
threshold, TGL option marker) and polling. Every ingestion pass loads them
fresh; nothing here caches across calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shoutout.db.models import AppStateModel
from shoutout.errors import SettingsValidationError

logger = logging.getLogger(__name__)

BIG_SALE_THRESHOLD = "big_sale_threshold"
TGL_OPTION_NAME = "tgl_option_name"
POLLING_INTERVAL_MINUTES = "polling_interval_minutes"
POLLING_ENABLED = "polling_enabled"
LAST_POLL_TIMESTAMP = "last_poll_timestamp"

# Keys an administrator may change through the settings API
EDITABLE_SETTINGS = [BIG_SALE_THRESHOLD, TGL_OPTION_NAME, POLLING_INTERVAL_MINUTES]

DEFAULT_BIG_SALE_THRESHOLD = Decimal("700")
DEFAULT_TGL_OPTION_NAME = "Option C - System Update"
DEFAULT_POLLING_INTERVAL = 5


@dataclass(frozen=True)
class AppSettings:
    """Snapshot of ``app_state`` taken at the start of a pass."""

    big_sale_threshold: Decimal = DEFAULT_BIG_SALE_THRESHOLD
    tgl_option_name: str = DEFAULT_TGL_OPTION_NAME
    polling_interval_minutes: int = DEFAULT_POLLING_INTERVAL
    polling_enabled: bool = False
    last_poll_timestamp: str | None = None

    def to_api(self) -> dict[str, Any]:
        return {
            BIG_SALE_THRESHOLD: float(self.big_sale_threshold),
            TGL_OPTION_NAME: self.tgl_option_name,
            POLLING_INTERVAL_MINUTES: self.polling_interval_minutes,
        }


def _unwrap_json_string(value: Any) -> Any:
    # Older rows hold the marker double-encoded ('"Option C ..."')
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _as_bool(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


def parse_settings(
    raw: dict[str, Any],
    default_threshold: Decimal = DEFAULT_BIG_SALE_THRESHOLD,
    default_marker: str = DEFAULT_TGL_OPTION_NAME,
) -> AppSettings:
    """Build an AppSettings from raw ``app_state`` values, applying defaults."""
    threshold = raw.get(BIG_SALE_THRESHOLD)
    try:
        threshold = Decimal(str(threshold)) if threshold is not None else default_threshold
    except InvalidOperation:
        logger.warning("Unparseable big_sale_threshold %r, using %s", threshold, default_threshold)
        threshold = default_threshold

    marker = _unwrap_json_string(raw.get(TGL_OPTION_NAME)) or default_marker

    interval = raw.get(POLLING_INTERVAL_MINUTES)
    try:
        interval = int(interval) if interval is not None else DEFAULT_POLLING_INTERVAL
    except (TypeError, ValueError):
        interval = DEFAULT_POLLING_INTERVAL

    last_poll = raw.get(LAST_POLL_TIMESTAMP)

    return AppSettings(
        big_sale_threshold=threshold,
        tgl_option_name=marker,
        polling_interval_minutes=interval,
        polling_enabled=_as_bool(raw.get(POLLING_ENABLED)),
        last_poll_timestamp=str(last_poll) if last_poll else None,
    )


async def read_state(session: AsyncSession, keys: list[str] | None = None) -> dict[str, Any]:
    """Read raw key/value pairs from ``app_state``."""
    stmt = select(AppStateModel.key, AppStateModel.value)
    if keys is not None:
        stmt = stmt.where(AppStateModel.key.in_(keys))
    result = await session.execute(stmt)
    return {key: value for key, value in result.all()}


async def write_state(session: AsyncSession, key: str, value: Any) -> None:
    """Insert or update one ``app_state`` key. The caller commits."""
    row = await session.get(AppStateModel, key)
    now = datetime.now(timezone.utc)
    if row is None:
        session.add(AppStateModel(key=key, value=value, updated_at=now))
    else:
        row.value = value
        row.updated_at = now
    await session.flush()


async def load_settings(
    session: AsyncSession,
    default_threshold: Decimal = DEFAULT_BIG_SALE_THRESHOLD,
    default_marker: str = DEFAULT_TGL_OPTION_NAME,
) -> AppSettings:
    """Load a fresh settings snapshot."""
    raw = await read_state(
        session,
        [
            BIG_SALE_THRESHOLD,
            TGL_OPTION_NAME,
            POLLING_INTERVAL_MINUTES,
            POLLING_ENABLED,
            LAST_POLL_TIMESTAMP,
        ],
    )
    return parse_settings(raw, default_threshold, default_marker)


def validate_setting(key: str, value: Any) -> Any:
    """Validate one editable setting and return the value to store.

    Raises:
        SettingsValidationError: Unknown key or invalid value
    """
    if key not in EDITABLE_SETTINGS:
        raise SettingsValidationError(f"Invalid setting: {key}", allowed=EDITABLE_SETTINGS)

    if key == BIG_SALE_THRESHOLD:
        try:
            threshold = Decimal(str(value))
        except InvalidOperation:
            threshold = None
        if threshold is None or isinstance(value, bool) or not threshold.is_finite() or threshold <= 0:
            raise SettingsValidationError("big_sale_threshold must be a positive number")
        return str(threshold)

    if key == TGL_OPTION_NAME:
        if not isinstance(value, str) or not value.strip():
            raise SettingsValidationError("tgl_option_name cannot be empty")
        return value

    # polling_interval_minutes
    try:
        interval = int(value)
    except (TypeError, ValueError):
        interval = None
    if interval is None or isinstance(value, bool) or not 1 <= interval <= 60:
        raise SettingsValidationError("polling_interval_minutes must be between 1 and 60")
    return interval


async def update_settings(session: AsyncSession, updates: dict[str, Any]) -> dict[str, str]:
    """Validate every update, then write them. Nothing is written if any is invalid."""
    if not updates:
        raise SettingsValidationError("Request body is required", allowed=EDITABLE_SETTINGS)

    validated = {key: validate_setting(key, value) for key, value in updates.items()}

    results = {}
    for key, value in validated.items():
        await write_state(session, key, value)
        results[key] = "updated"
        logger.info("Updated setting: %s = %r", key, value)

    return results


def check_config_drift(
    settings: AppSettings,
    threshold: Decimal | None = None,
    marker: str | None = None,
) -> list[str]:
    """Compare per-run overrides against live settings.

    Overrides are honoured for the run, but any divergence is reported so
    that historical corrections do not silently fork the detection rules.
    """
    warnings = []
    if threshold is not None and threshold != settings.big_sale_threshold:
        warnings.append(
            f"big_sale_threshold override {threshold} differs from configured "
            f"{settings.big_sale_threshold}"
        )
    if marker is not None and marker != settings.tgl_option_name:
        warnings.append(
            f"tgl_option_name override {marker!r} differs from configured "
            f"{settings.tgl_option_name!r}"
        )

    for message in warnings:
        logger.warning("Configuration drift: %s", message)

    return warnings


def with_overrides(
    settings: AppSettings,
    threshold: Decimal | None = None,
    marker: str | None = None,
) -> AppSettings:
    """Return a copy of ``settings`` with run-level overrides applied."""
    if marker is not None and not marker.strip():
        raise SettingsValidationError("tgl_option_name cannot be empty")
    return AppSettings(
        big_sale_threshold=threshold if threshold is not None else settings.big_sale_threshold,
        tgl_option_name=marker if marker is not None else settings.tgl_option_name,
        polling_interval_minutes=settings.polling_interval_minutes,
        polling_enabled=settings.polling_enabled,
        last_poll_timestamp=settings.last_poll_timestamp,
    )
