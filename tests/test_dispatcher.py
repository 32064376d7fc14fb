"""
Tests for MessageDispatcher with fake outbound clients.
"""

import pytest

from relay.bot.dispatcher import ERROR_TEXT, GREETING_TEXT, THINKING_TEXT, MessageDispatcher
from relay.bot.models import WebhookPayload
from relay.bot.whatsapp import ChunkedSendResult
from relay.services.errors import ServiceError
from relay.services.idempotency import IdempotencyGuard
from relay.services.query_client import NO_ANSWER, QueryAnswer
from relay.services.rate_limiter import RateLimiter
from relay.services.store import FallbackTTLStore, MemoryTTLStore


class BrokenMemoryStore(MemoryTTLStore):
    async def exists(self, key: str) -> bool:
        raise RuntimeError("local store corrupted")


class FakeWhatsApp:
    def __init__(self, fail_chunked: bool = False):
        self.texts: list[tuple[str, str]] = []
        self.replies: list[tuple[str, str]] = []
        self.fail_chunked = fail_chunked

    async def send_text(self, to: str, message: str) -> dict:
        self.texts.append((to, message))
        return {}

    async def send_text_chunked(self, to: str, message: str) -> ChunkedSendResult:
        if self.fail_chunked:
            raise ServiceError("WhatsApp API error: HTTP 500", service_id="whatsapp")
        self.replies.append((to, message))
        return ChunkedSendResult(total=1, sent=[0])


class FakeQueryClient:
    def __init__(self, answer: str = "**Thirty** days.", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.queries = []

    async def query(self, query) -> QueryAnswer:
        self.queries.append(query)
        if self.error:
            raise self.error
        return QueryAnswer(answer=self.answer)


def make_dispatcher(store, whatsapp=None, query_client=None, **kwargs) -> MessageDispatcher:
    return MessageDispatcher(
        whatsapp=whatsapp or FakeWhatsApp(),
        query_client=query_client or FakeQueryClient(),
        guard=IdempotencyGuard(store),
        **kwargs,
    )


@pytest.fixture
def payload(webhook_body):
    def build(*messages) -> WebhookPayload:
        return WebhookPayload.model_validate(webhook_body(*messages))

    return build


class TestMessageDispatcher:
    """Tests for MessageDispatcher.handle_payload."""

    async def test_query_is_answered(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(store, whatsapp, query_client)

        report = await dispatcher.handle_payload(payload(text_message()))

        assert report.processed == 1
        assert whatsapp.texts == [("15551234567", THINKING_TEXT)]
        assert whatsapp.replies == [("15551234567", "Thirty days.")]

        query = query_client.queries[0]
        assert query.user_id == "whatsapp:+15551234567"
        assert query.metadata.contact_name == "Ada"
        assert query.metadata.message_id == "wamid.1"

    async def test_greeting_skips_query(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(store, whatsapp, query_client)

        await dispatcher.handle_payload(payload(text_message(body="Hello ")))

        assert whatsapp.texts == [("15551234567", GREETING_TEXT)]
        assert query_client.queries == []

    async def test_duplicate_delivery_processed_once(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(store, whatsapp, query_client)

        first = await dispatcher.handle_payload(payload(text_message()))
        second = await dispatcher.handle_payload(payload(text_message()))

        assert (first.processed, second.duplicates) == (1, 1)
        assert len(query_client.queries) == 1
        assert len(whatsapp.replies) == 1

    async def test_multiple_messages_in_one_delivery(self, store, text_message, payload):
        whatsapp = FakeWhatsApp()
        dispatcher = make_dispatcher(store, whatsapp)

        report = await dispatcher.handle_payload(
            payload(
                text_message("wamid.1", body="first?"),
                text_message("wamid.2", body="second?"),
                text_message("wamid.1", body="first?"),
            )
        )

        assert (report.processed, report.duplicates) == (2, 1)
        assert len(whatsapp.replies) == 2

    async def test_non_text_message_gets_notice(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(store, whatsapp, query_client)
        image = {"id": "wamid.img", "from": "15551234567", "type": "image", "image": {}}

        await dispatcher.handle_payload(payload(image))

        assert len(whatsapp.texts) == 1
        assert "cannot handle images" in whatsapp.texts[0][1]
        assert query_client.queries == []

    async def test_overlong_input_gets_notice(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(store, whatsapp, query_client, max_input_length=10)

        await dispatcher.handle_payload(payload(text_message(body="x" * 11)))

        assert "too long (11 characters)" in whatsapp.texts[0][1]
        assert query_client.queries == []

    async def test_query_failure_sends_apology(self, store, text_message, payload):
        whatsapp = FakeWhatsApp()
        dispatcher = make_dispatcher(
            store, whatsapp, FakeQueryClient(error=ServiceError("Query API error: 500"))
        )

        report = await dispatcher.handle_payload(payload(text_message()))

        assert report.processed == 1
        assert whatsapp.texts[-1] == ("15551234567", ERROR_TEXT)

    async def test_reply_failure_sends_apology(self, store, text_message, payload):
        whatsapp = FakeWhatsApp(fail_chunked=True)
        dispatcher = make_dispatcher(store, whatsapp)

        await dispatcher.handle_payload(payload(text_message()))

        assert whatsapp.texts[-1] == ("15551234567", ERROR_TEXT)

    async def test_empty_answer_uses_placeholder(self, store, text_message, payload):
        whatsapp = FakeWhatsApp()
        dispatcher = make_dispatcher(store, whatsapp, FakeQueryClient(answer="   "))

        await dispatcher.handle_payload(payload(text_message()))

        assert whatsapp.replies == [("15551234567", NO_ANSWER)]

    async def test_rate_limited_sender_is_dropped(self, store, text_message, payload):
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        dispatcher = make_dispatcher(
            store,
            whatsapp,
            query_client,
            phone_limiter=RateLimiter(store, max_requests=1, window_seconds=60),
        )

        await dispatcher.handle_payload(payload(text_message("wamid.1")))
        await dispatcher.handle_payload(payload(text_message("wamid.2")))

        assert len(query_client.queries) == 1

    async def test_non_whatsapp_object_ignored(self, store, text_message, payload):
        whatsapp = FakeWhatsApp()
        dispatcher = make_dispatcher(store, whatsapp)

        report = await dispatcher.handle_payload(
            WebhookPayload.model_validate({"object": "page", "entry": []})
        )

        assert report.processed == 0
        assert whatsapp.texts == []

    async def test_store_failure_counts_as_failed_and_apologizes(self, text_message, payload):
        """When no TTL store backend works, the sender still hears back."""
        whatsapp, query_client = FakeWhatsApp(), FakeQueryClient()
        broken = FallbackTTLStore(shared=None, local=BrokenMemoryStore())
        dispatcher = make_dispatcher(broken, whatsapp, query_client)

        report = await dispatcher.handle_payload(payload(text_message()))

        assert report.failed == 1
        assert report.processed == 0
        assert whatsapp.texts == [("15551234567", ERROR_TEXT)]
        assert query_client.queries == []
