"""Google Chat incoming-webhook delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

GOOGLE_CHAT_HOST = "chat.googleapis.com"
GOOGLE_CHAT_PATH_PREFIX = "/v1/spaces/"

TEST_MESSAGE = (
    "\U0001f9ea *Test from Shout Out*\n\n"
    "This webhook is working correctly! You'll receive celebration messages here."
)


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def is_valid_webhook_url(url: str) -> bool:
    """True for ``https://chat.googleapis.com/v1/spaces/...`` URLs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return (
        parsed.scheme == "https"
        and parsed.hostname == GOOGLE_CHAT_HOST
        and parsed.path.startswith(GOOGLE_CHAT_PATH_PREFIX)
    )


def build_card_payload(message: str, gif_url: str, card_id: str, alt_text: str) -> dict:
    """Chat card with the message text and, when present, a GIF."""
    sections = [{"widgets": [{"textParagraph": {"text": message}}]}]
    if gif_url:
        sections.append(
            {
                "widgets": [
                    {
                        "image": {
                            "imageUrl": gif_url,
                            "altText": alt_text,
                            "onClick": {"openLink": {"url": gif_url}},
                        }
                    }
                ]
            }
        )
    return {"cardsV2": [{"cardId": card_id, "card": {"sections": sections}}]}


async def post_chat_message(
    url: str,
    payload: dict,
    http: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> DeliveryResult:
    """POST one JSON message. Never retried; failures come back in the result."""
    try:
        if http is not None:
            response = await http.post(url, json=payload, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.error("chat_message_error: %s", str(e))
        return DeliveryResult(success=False, error=str(e))

    if response.is_error:
        logger.error(
            "chat_message_failed: status=%s response=%s",
            response.status_code,
            response.text,
        )
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.text}",
        )

    logger.info("chat_message_sent")
    return DeliveryResult(success=True, status_code=response.status_code)


async def send_test_message(url: str, http: httpx.AsyncClient | None = None) -> DeliveryResult:
    """Send the verification message used when a webhook is created or tested."""
    result = await post_chat_message(url, {"text": TEST_MESSAGE}, http=http)
    if not result.success:
        result.error = f"Webhook test failed: {result.error}"
    return result
