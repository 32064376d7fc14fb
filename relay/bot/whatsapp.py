"""WhatsApp Cloud API sender with retry and long-message splitting."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from relay.services.chunker import WHATSAPP_MESSAGE_MAX_LENGTH, split_for_sending
from relay.services.errors import (
    ChunkSendError,
    MessageTooLongError,
    ServiceError,
    ServiceUnavailableError,
)
from relay.services.retry import RetryPolicy, fetch_with_retry, retry_on_rate_limit


@dataclass
class ChunkedSendResult:
    """Delivery report for a (possibly split) reply. Indices are 0-based."""

    total: int
    sent: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)


class WhatsAppClient:
    """Sends text messages through the WhatsApp Cloud API."""

    SERVICE_ID = "whatsapp"

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v18.0",
        policy: RetryPolicy | None = None,
        max_length: int = WHATSAPP_MESSAGE_MAX_LENGTH,
        chunk_delay: float = 0.5,
        splitting_enabled: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.messages_url = f"{base_url.rstrip('/')}/{api_version}/{phone_number_id}/messages"
        self.policy = policy or RetryPolicy(
            timeout=15.0, max_retries=2, retry_delay=1.0, should_retry=retry_on_rate_limit
        )
        self.max_length = max_length
        self.chunk_delay = chunk_delay
        self.splitting_enabled = splitting_enabled
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.policy.timeout))

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def validate_message_length(self, message: str) -> None:
        if not message or not isinstance(message, str):
            raise ValueError("Message must be a non-empty string")
        if len(message) > self.max_length:
            raise MessageTooLongError(len(message), self.max_length, self.SERVICE_ID)

    async def send_text(self, to: str, message: str) -> dict[str, Any]:
        """Send one text message.

        Args:
            to: Recipient phone number (country code, no +)
            message: Text of at most max_length characters

        Returns:
            Parsed API response body
        """
        if not self.is_configured:
            raise ServiceUnavailableError(
                "WhatsApp credentials not configured", service_id=self.SERVICE_ID
            )
        self.validate_message_length(message)

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": message},
        }
        response = await fetch_with_retry(
            self._client,
            "POST",
            self.messages_url,
            self.policy,
            service_id=self.SERVICE_ID,
            json=payload,
            headers=self._get_headers(),
        )

        if not response.is_success:
            try:
                error_message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                error_message = response.text
            raise ServiceError(
                f"WhatsApp API error: HTTP {response.status_code}: {error_message}",
                service_id=self.SERVICE_ID,
            )

        logger.debug(f"Message sent to {to} ({len(message)} chars)")
        return response.json()

    async def send_text_chunked(self, to: str, message: str) -> ChunkedSendResult:
        """Send a reply, splitting it into marked parts when too long.

        Parts go out strictly in order with chunk_delay between them. If the
        first part fails nothing reached the user, so ChunkSendError is
        raised; later failures are recorded and sending continues.
        """
        if len(message) <= self.max_length:
            await self.send_text(to, message)
            return ChunkedSendResult(total=1, sent=[0])

        if not self.splitting_enabled:
            logger.warning(
                f"Message splitting disabled, truncating reply to {to} "
                f"from {len(message)} to {self.max_length} chars"
            )
            await self.send_text(to, message[: self.max_length])
            return ChunkedSendResult(total=1, sent=[0])

        chunks = split_for_sending(message, self.max_length)
        result = ChunkedSendResult(total=len(chunks))
        logger.info(f"Sending reply to {to} in {len(chunks)} parts")

        for index, chunk in enumerate(chunks):
            try:
                await self.send_text(to, chunk)
                result.sent.append(index)
            except Exception as e:
                logger.error(
                    f"Failed to send message chunk {index + 1}/{len(chunks)}: {e}"
                )
                if index == 0:
                    raise ChunkSendError(index, len(chunks), e) from e
                result.failed.append(index)

            if index < len(chunks) - 1:
                await asyncio.sleep(self.chunk_delay)

        if result.partial:
            logger.warning(
                f"Partial failure in message splitting: sent {len(result.sent)}/{result.total}, "
                f"failed parts {[i + 1 for i in result.failed]}"
            )
        return result

    async def close(self) -> None:
        await self._client.aclose()
