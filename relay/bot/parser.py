"""Greeting detection and message normalization."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from relay.bot.models import ChangeValue, InboundMessage, NormalizedQuery, QueryMetadata

GREETING_PATTERNS = [
    re.compile(r"^hi\s*$", re.IGNORECASE),
    re.compile(r"^hello\s*$", re.IGNORECASE),
    re.compile(r"^hey\s*$", re.IGNORECASE),
    re.compile(r"^start\s*$", re.IGNORECASE),
]


class MessageKind(str, Enum):
    GREETING = "greeting"
    QUERY = "query"


@dataclass
class ParsedMessage:
    kind: MessageKind
    text: str


def parse(text: str) -> ParsedMessage:
    """Classify a text message as a greeting or a query."""
    trimmed = text.strip()
    if any(pattern.match(trimmed) for pattern in GREETING_PATTERNS):
        return ParsedMessage(kind=MessageKind.GREETING, text=trimmed)
    return ParsedMessage(kind=MessageKind.QUERY, text=trimmed)


def detect_language(text: str) -> str:
    # TODO: plug a real detector (e.g. langdetect) once non-English traffic shows up
    return "en"


def _format_timestamp(raw: str | None) -> str:
    if raw:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc).isoformat()
        except (ValueError, OverflowError, OSError):
            pass
    return datetime.now(timezone.utc).isoformat()


def normalize_message(
    message: InboundMessage, value: ChangeValue | None = None
) -> NormalizedQuery:
    """Convert a WhatsApp message into the query API's neutral shape."""
    if not message.from_:
        raise ValueError("Invalid WhatsApp message: sender is required")

    contact = value.contacts[0] if value and value.contacts else None
    wa_id = (contact.wa_id if contact else None) or message.from_

    return NormalizedQuery(
        user_id=f"whatsapp:+{message.from_}",
        message=message.body,
        timestamp=_format_timestamp(message.timestamp),
        metadata=QueryMetadata(
            message_id=message.id,
            language=detect_language(message.body),
            phone_number=message.from_,
            wa_id=wa_id,
            contact_name=contact.profile.name if contact and contact.profile else None,
        ),
    )
