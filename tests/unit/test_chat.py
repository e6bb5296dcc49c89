"""Unit tests for Google Chat webhook delivery."""

from __future__ import annotations

import json

import httpx
import pytest

from shoutout.notifications.chat import (
    TEST_MESSAGE,
    build_card_payload,
    is_valid_webhook_url,
    post_chat_message,
    send_test_message,
)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://chat.googleapis.com/v1/spaces/AAA/messages?key=k", True),
        ("http://chat.googleapis.com/v1/spaces/AAA/messages", False),
        ("https://chat.example.com/v1/spaces/AAA/messages", False),
        ("https://chat.googleapis.com/v2/rooms/AAA", False),
        ("not a url", False),
    ],
)
def test_is_valid_webhook_url(url, expected):
    assert is_valid_webhook_url(url) is expected


class TestBuildCardPayload:
    def test_with_gif(self):
        payload = build_card_payload("Nice!", "https://gifs.test/a.gif", "card-1", "tgl celebration")

        card = payload["cardsV2"][0]
        assert card["cardId"] == "card-1"
        sections = card["card"]["sections"]
        assert sections[0]["widgets"][0]["textParagraph"]["text"] == "Nice!"
        image = sections[1]["widgets"][0]["image"]
        assert image["imageUrl"] == "https://gifs.test/a.gif"
        assert image["altText"] == "tgl celebration"

    def test_without_gif_has_text_only(self):
        payload = build_card_payload("Nice!", "", "card-1", "alt")

        assert len(payload["cardsV2"][0]["card"]["sections"]) == 1


class TestPostChatMessage:
    @pytest.mark.asyncio
    async def test_success(self, chat, webhook_url):
        async with chat.client() as http:
            result = await post_chat_message(webhook_url, {"text": "hi"}, http=http)

        assert result.success
        assert result.status_code == 200
        assert json.loads(chat.posts[0].content) == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_error_status_is_reported_not_raised(self, chat, webhook_url):
        chat.status_code = 403
        async with chat.client() as http:
            result = await post_chat_message(webhook_url, {"text": "hi"}, http=http)

        assert not result.success
        assert result.status_code == 403
        assert "HTTP 403" in result.error
        assert len(chat.posts) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self, webhook_url):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            result = await post_chat_message(webhook_url, {"text": "hi"}, http=http)

        assert not result.success
        assert result.status_code is None
        assert "timed out" in result.error


class TestSendTestMessage:
    @pytest.mark.asyncio
    async def test_sends_fixed_text(self, chat, webhook_url):
        async with chat.client() as http:
            result = await send_test_message(webhook_url, http=http)

        assert result.success
        assert json.loads(chat.posts[0].content) == {"text": TEST_MESSAGE}

    @pytest.mark.asyncio
    async def test_failure_is_prefixed(self, chat, webhook_url):
        chat.status_code = 404
        async with chat.client() as http:
            result = await send_test_message(webhook_url, http=http)

        assert not result.success
        assert result.error.startswith("Webhook test failed: ")
