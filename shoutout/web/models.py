"""Pydantic request/response models for the admin API.

Usage:
    from shoutout.web.models import GifCreate

    @router.post("/gifs")
    async def create_gif(payload: GifCreate):
        ...
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional
from uuid import UUID
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict

from shoutout.notifications.celebrations import CELEBRATION_KINDS
from shoutout.notifications.chat import is_valid_webhook_url


def _check_tags(tags: List[str]) -> List[str]:
    if not tags:
        raise ValueError("tags must be a non-empty array")
    invalid = [tag for tag in tags if tag not in CELEBRATION_KINDS]
    if invalid:
        raise ValueError(f"Invalid tags: {', '.join(invalid)}. Allowed tags: tgl, big_sale")
    return tags


def _check_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be a valid URL")
    return url


def _check_webhook_url(url: str) -> str:
    if not is_valid_webhook_url(url):
        raise ValueError(
            "Invalid Google Chat webhook URL. Must be https://chat.googleapis.com/v1/spaces/..."
        )
    return url


MESSAGE_MAX_LENGTH = 500

BUSINESS_UNITS = [
    "Plumbing Service",
    "Plumbing Install",
    "HVAC Service",
    "HVAC Install",
    "Electrical Service",
    "Electrical Install",
    "Inside Sales",
]


def _check_category(category: str) -> str:
    if category not in CELEBRATION_KINDS:
        raise ValueError('category must be either "big_sale" or "tgl"')
    return category


def _check_message_text(text: str) -> str:
    if not text.strip():
        raise ValueError("message_text must not be empty")
    if len(text) > MESSAGE_MAX_LENGTH:
        raise ValueError(f"message_text must be {MESSAGE_MAX_LENGTH} characters or less")
    return text


def _check_business_unit(unit: str) -> str:
    if unit not in BUSINESS_UNITS:
        raise ValueError(f"Invalid business_unit. Allowed values: {', '.join(BUSINESS_UNITS)}")
    return unit


Tags = Annotated[List[str], AfterValidator(_check_tags)]
GifUrl = Annotated[str, AfterValidator(_check_url)]
WebhookUrl = Annotated[str, AfterValidator(_check_webhook_url)]
Category = Annotated[str, AfterValidator(_check_category)]
MessageText = Annotated[str, AfterValidator(_check_message_text)]
BusinessUnit = Annotated[str, AfterValidator(_check_business_unit)]


# ============================================================================
# Celebration GIFs
# ============================================================================


class GifCreate(BaseModel):
    name: str
    url: GifUrl
    tags: Tags
    is_active: bool = True


class GifUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[GifUrl] = None
    tags: Optional[Tags] = None
    is_active: Optional[bool] = None


class GifOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str
    tags: List[str]
    is_active: bool
    created_at: Optional[datetime] = None


# ============================================================================
# Webhooks
# ============================================================================


class WebhookCreate(BaseModel):
    name: str
    url: WebhookUrl
    tags: Tags
    is_active: bool = True


class WebhookUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[WebhookUrl] = None
    tags: Optional[Tags] = None
    is_active: Optional[bool] = None


class WebhookOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str
    tags: List[str]
    is_active: bool
    created_at: Optional[datetime] = None


class DeliveryStats(BaseModel):
    total_deliveries: int = 0
    successful_deliveries: int = 0
    last_delivery: Optional[dict] = None


class WebhookWithStats(WebhookOut):
    stats: DeliveryStats


# ============================================================================
# Polling
# ============================================================================


class PollToggle(BaseModel):
    polling_enabled: bool


class PollLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    estimates_found: int
    estimates_processed: int
    error_count: int
    duration_ms: int
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================================================
# Webhook delivery logs
# ============================================================================


class WebhookLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    webhook_id: Optional[UUID] = None
    celebration_type: str
    estimate_id: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None


class WebhookLogSummary(BaseModel):
    total: int
    success: int
    failed: int
    success_rate: int


class WebhookLogPage(BaseModel):
    logs: List[WebhookLogOut]
    summary: WebhookLogSummary


# ============================================================================
# Celebration messages
# ============================================================================


class MessageCreate(BaseModel):
    category: Category
    message_text: MessageText
    is_active: bool = True


class MessageUpdate(BaseModel):
    category: Optional[Category] = None
    message_text: Optional[MessageText] = None
    is_active: Optional[bool] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    category: str
    message_text: str
    is_active: bool
    created_at: Optional[datetime] = None


# ============================================================================
# Salespeople
# ============================================================================


class SalespersonUpdate(BaseModel):
    business_unit: Optional[BusinessUnit] = None
    is_active: Optional[bool] = None


class SalespersonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    technician_id: Optional[int] = None
    name: str
    business_unit: Optional[str] = None
    is_active: bool
    updated_at: Optional[datetime] = None
