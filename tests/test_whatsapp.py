"""
Tests for WhatsAppClient (respx-mocked Cloud API).
"""

import json

import httpx
import pytest
import respx

from relay.bot.whatsapp import WhatsAppClient
from relay.services.errors import (
    ChunkSendError,
    MessageTooLongError,
    ServiceError,
    ServiceUnavailableError,
)
from relay.services.retry import RetryPolicy, retry_on_rate_limit

MESSAGES_URL = "https://graph.facebook.com/v18.0/PHONE_ID/messages"


def sent_ok(message_id: str = "wamid.out") -> httpx.Response:
    return httpx.Response(200, json={"messages": [{"id": message_id}]})


def make_client(**kwargs) -> WhatsAppClient:
    return WhatsAppClient(
        access_token="token",
        phone_number_id="PHONE_ID",
        policy=RetryPolicy(
            timeout=1.0, max_retries=1, retry_delay=0.0, should_retry=retry_on_rate_limit
        ),
        chunk_delay=0,
        **kwargs,
    )


def long_reply(parts: int) -> str:
    return "\n\n".join(f"Paragraph {i}. " + "x" * 3000 for i in range(parts))


class TestSendText:
    """Tests for send_text."""

    def test_messages_url(self):
        client = WhatsAppClient(
            access_token="t",
            phone_number_id="123",
            base_url="https://graph.example.com/",
            api_version="v19.0",
        )
        assert client.messages_url == "https://graph.example.com/v19.0/123/messages"

    @respx.mock
    async def test_sends_text_payload(self):
        route = respx.post(MESSAGES_URL).mock(return_value=sent_ok())
        client = make_client()

        await client.send_text("15551234567", "Hello")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer token"
        assert json.loads(request.content) == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": "15551234567",
            "type": "text",
            "text": {"body": "Hello"},
        }
        await client.close()

    @respx.mock
    async def test_retries_rate_limit(self):
        route = respx.post(MESSAGES_URL).mock(
            side_effect=[httpx.Response(429), sent_ok()]
        )
        client = make_client()

        await client.send_text("15551234567", "Hello")

        assert route.call_count == 2

    @respx.mock
    async def test_api_error_raises(self):
        respx.post(MESSAGES_URL).mock(
            return_value=httpx.Response(400, json={"error": {"message": "Invalid recipient"}})
        )
        client = make_client()

        with pytest.raises(ServiceError, match="Invalid recipient"):
            await client.send_text("bad", "Hello")

    async def test_rejects_too_long(self):
        client = make_client()

        with pytest.raises(MessageTooLongError):
            await client.send_text("15551234567", "x" * 4097)

    async def test_rejects_empty(self):
        client = make_client()

        with pytest.raises(ValueError):
            await client.send_text("15551234567", "")

    async def test_not_configured(self):
        client = WhatsAppClient(access_token="", phone_number_id="")

        assert not client.is_configured
        with pytest.raises(ServiceUnavailableError):
            await client.send_text("15551234567", "Hello")


class TestSendTextChunked:
    """Tests for send_text_chunked."""

    @respx.mock
    async def test_short_reply_sent_once(self):
        route = respx.post(MESSAGES_URL).mock(return_value=sent_ok())
        client = make_client()

        result = await client.send_text_chunked("15551234567", "Short answer")

        assert (result.total, result.sent, result.failed) == (1, [0], [])
        assert json.loads(route.calls.last.request.content)["text"]["body"] == "Short answer"

    @respx.mock
    async def test_long_reply_sent_in_marked_order(self):
        route = respx.post(MESSAGES_URL).mock(return_value=sent_ok())
        client = make_client()

        result = await client.send_text_chunked("15551234567", long_reply(3))

        bodies = [json.loads(c.request.content)["text"]["body"] for c in route.calls]
        assert result.total == len(bodies) == 3
        assert result.sent == [0, 1, 2]
        assert not result.partial
        assert [b.split("\n\n", 1)[0] for b in bodies] == [
            "[Part 1/3]",
            "[Part 2/3]",
            "[Part 3/3]",
        ]
        assert all(len(b) <= 4096 for b in bodies)

    @respx.mock
    async def test_first_chunk_failure_raises(self):
        route = respx.post(MESSAGES_URL).mock(return_value=httpx.Response(400))
        client = make_client()

        with pytest.raises(ChunkSendError) as exc_info:
            await client.send_text_chunked("15551234567", long_reply(3))

        assert exc_info.value.chunk_index == 0
        assert exc_info.value.total == 3
        assert route.call_count == 1

    @respx.mock
    async def test_later_chunk_failure_is_partial(self):
        respx.post(MESSAGES_URL).mock(
            side_effect=[sent_ok(), httpx.Response(400), sent_ok()]
        )
        client = make_client()

        result = await client.send_text_chunked("15551234567", long_reply(3))

        assert result.sent == [0, 2]
        assert result.failed == [1]
        assert result.partial

    @respx.mock
    async def test_splitting_disabled_truncates_long_reply(self):
        """Without splitting, one shortened message is still delivered."""
        route = respx.post(MESSAGES_URL).mock(return_value=sent_ok())
        client = make_client(splitting_enabled=False)
        reply = long_reply(3)

        result = await client.send_text_chunked("15551234567", reply)

        assert route.call_count == 1
        body = json.loads(route.calls.last.request.content)["text"]["body"]
        assert body == reply[:4096]
        assert (result.total, result.sent, result.failed) == (1, [0], [])
