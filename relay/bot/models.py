"""WhatsApp webhook payload models and the normalized query sent downstream."""

from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_OBJECT = "whatsapp_business_account"


class TextBody(BaseModel):
    body: str = ""


class InboundMessage(BaseModel):
    """A single message from value.messages[]."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    from_: str = Field(default="", alias="from")
    type: str = ""
    timestamp: str | None = None
    text: TextBody | None = None

    @property
    def body(self) -> str:
        return self.text.body if self.text else ""

    @property
    def is_text(self) -> bool:
        return self.type == "text" and bool(self.body.strip())


class ContactProfile(BaseModel):
    name: str | None = None


class Contact(BaseModel):
    wa_id: str | None = None
    profile: ContactProfile | None = None


class ChangeValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: list[InboundMessage] = Field(default_factory=list)
    contacts: list[Contact] = Field(default_factory=list)


class Change(BaseModel):
    field: str | None = None
    value: ChangeValue | None = None


class Entry(BaseModel):
    id: str | None = None
    changes: list[Change] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """Top-level body of POST /webhook."""

    model_config = ConfigDict(extra="ignore")

    object: str = ""
    entry: list[Entry] = Field(default_factory=list)

    @property
    def is_whatsapp(self) -> bool:
        return self.object == WHATSAPP_OBJECT

    def iter_messages(self) -> Iterator[tuple[InboundMessage, ChangeValue]]:
        """Yield every message with the change value it arrived in."""
        for entry in self.entry:
            for change in entry.changes:
                if change.value is None:
                    continue
                for message in change.value.messages:
                    yield message, change.value

    def first_sender(self) -> str | None:
        for message, _ in self.iter_messages():
            if message.from_:
                return message.from_
        return None


class QueryMetadata(BaseModel):
    message_id: str
    language: str = "en"
    phone_number: str
    wa_id: str
    contact_name: str | None = None


class NormalizedQuery(BaseModel):
    """Provider-neutral query forwarded to the query API."""

    user_id: str
    channel: str = "whatsapp"
    message: str
    timestamp: str
    metadata: QueryMetadata

    @property
    def conversation_id(self) -> str:
        return f"whatsapp-{self.metadata.wa_id or self.metadata.phone_number}"
