"""Celebration messages for TGL and big-sale events.

Each delivery attempt is recorded in ``webhook_logs``. An existing log row
for (estimate, kind, webhook), whatever its status, means that delivery has
already been handled and is never repeated.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shoutout.db.models import (
    CelebrationGifModel,
    CelebrationMessageModel,
    WebhookLogModel,
    WebhookModel,
)
from shoutout.notifications.chat import DeliveryResult, build_card_payload, post_chat_message
from shoutout.pipeline.events import EventFlags
from shoutout.pipeline.ingestion import CelebrateHook, PreparedEstimate

logger = logging.getLogger(__name__)

TGL = "tgl"
BIG_SALE = "big_sale"
CELEBRATION_KINDS = (TGL, BIG_SALE)


@dataclass
class Celebration:
    kind: str
    message: str
    gif_url: str = ""
    deliveries: list[DeliveryResult] = field(default_factory=list)


def celebration_kind(flags: EventFlags) -> str:
    """TGL wins when an estimate is both."""
    return TGL if flags.is_tgl else BIG_SALE


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):,.2f}"


def render_template(template: str, name: str, amount: Decimal) -> str:
    return template.replace("{name}", name).replace("{amount}", format_amount(amount))


def fallback_message(kind: str, salesperson: str, amount: Decimal, customer_name: str) -> str:
    if kind == TGL:
        return (
            f"{salesperson} just generated a TGL at {customer_name}'s house! "
            f"Awesome work {salesperson}!!!"
        )
    return f"\U0001f389 {salesperson} just closed a sale of ${format_amount(amount)}! Amazing work!"


async def build_celebration(
    session: AsyncSession,
    kind: str,
    salesperson: str,
    amount: Decimal,
    customer_name: str,
    rng: random.Random | None = None,
) -> Celebration:
    """Pick a random active template and GIF for ``kind``."""
    if kind not in CELEBRATION_KINDS:
        raise ValueError(f"Unknown celebration kind: {kind}")
    rng = rng or random.Random()

    templates = (
        await session.execute(
            select(CelebrationMessageModel.message_text).where(
                CelebrationMessageModel.category == kind,
                CelebrationMessageModel.is_active.is_(True),
            )
        )
    ).scalars().all()

    gifs = (
        await session.execute(
            select(CelebrationGifModel).where(CelebrationGifModel.is_active.is_(True))
        )
    ).scalars().all()
    gif_urls = [gif.url for gif in gifs if kind in (gif.tags or [])]

    if not gif_urls:
        logger.warning(f"No active {kind} GIFs found")
    gif_url = rng.choice(gif_urls) if gif_urls else ""

    if not templates:
        logger.warning(f"No active {kind} messages found, using fallback")
        return Celebration(kind, fallback_message(kind, salesperson, amount, customer_name), gif_url)

    message = render_template(rng.choice(templates), salesperson, amount)
    return Celebration(kind, message, gif_url)


async def already_celebrated(session: AsyncSession, estimate_id: str, kind: str) -> bool:
    result = await session.execute(
        select(WebhookLogModel.id)
        .where(
            WebhookLogModel.estimate_id == estimate_id,
            WebhookLogModel.celebration_type == kind,
        )
        .limit(1)
    )
    return result.first() is not None


async def active_webhooks(session: AsyncSession, tag: str) -> list[WebhookModel]:
    result = await session.execute(select(WebhookModel).where(WebhookModel.is_active.is_(True)))
    return [webhook for webhook in result.scalars().all() if tag in (webhook.tags or [])]


async def send_celebration(
    session: AsyncSession,
    celebration: Celebration,
    estimate_id: str,
    http: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> Celebration:
    """Deliver to every active webhook tagged with the celebration kind."""
    webhooks = await active_webhooks(session, celebration.kind)
    if not webhooks:
        logger.warning(f"No active webhooks configured for {celebration.kind}")
        return celebration

    payload = build_card_payload(
        celebration.message,
        celebration.gif_url,
        card_id=f"celebration-{estimate_id}",
        alt_text=f"{celebration.kind} celebration",
    )

    for webhook in webhooks:
        existing = await session.execute(
            select(WebhookLogModel.id)
            .where(
                WebhookLogModel.estimate_id == estimate_id,
                WebhookLogModel.celebration_type == celebration.kind,
                WebhookLogModel.webhook_id == webhook.id,
            )
            .limit(1)
        )
        if existing.first() is not None:
            logger.info(f"Celebration already logged for {estimate_id} on webhook {webhook.id}, skipping")
            continue

        result = await post_chat_message(webhook.url, payload, http=http, timeout=timeout)
        celebration.deliveries.append(result)
        session.add(
            WebhookLogModel(
                webhook_id=webhook.id,
                celebration_type=celebration.kind,
                estimate_id=estimate_id,
                status="success" if result.success else "failed",
                error_message=result.error,
            )
        )
        await session.commit()

    return celebration


def make_celebrate_hook(
    session_factory: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> CelebrateHook:
    """Ingestion hook that celebrates each newly inserted event estimate once."""

    async def celebrate(item: PreparedEstimate) -> Celebration | None:
        kind = celebration_kind(item.flags)
        estimate = item.estimate
        async with session_factory() as session:
            if await already_celebrated(session, estimate.id, kind):
                logger.info(f"Celebration for {estimate.id} ({kind}) already sent")
                return None
            celebration = await build_celebration(
                session, kind, item.salesperson, estimate.amount, item.customer_name
            )
            return await send_celebration(session, celebration, estimate.id, http=http, timeout=timeout)

    return celebrate
