"""
Test fixtures for the WhatsApp relay tests.

Provides a controllable clock, in-memory stores and webhook payload builders.
"""

from typing import Any

import pytest

from relay.services.store import FallbackTTLStore, MemoryTTLStore


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryTTLStore:
    return MemoryTTLStore(clock=clock)


@pytest.fixture
def store(memory_store: MemoryTTLStore) -> FallbackTTLStore:
    """Memory-only store, as the relay runs without REDIS_URL."""
    return FallbackTTLStore(shared=None, local=memory_store)


def build_text_message(
    message_id: str = "wamid.1", sender: str = "15551234567", body: str = "What is the refund policy?"
) -> dict[str, Any]:
    return {
        "id": message_id,
        "from": sender,
        "type": "text",
        "timestamp": "1700000000",
        "text": {"body": body},
    }


def build_webhook_body(*messages: dict[str, Any], contact_name: str = "Ada") -> dict[str, Any]:
    sender = messages[0]["from"] if messages else "15551234567"
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "entry-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": [{"wa_id": sender, "profile": {"name": contact_name}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def text_message():
    return build_text_message


@pytest.fixture
def webhook_body():
    return build_webhook_body
