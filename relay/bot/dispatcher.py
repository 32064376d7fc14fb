"""WhatsApp message dispatcher: webhook payload in, replies out."""

import time
from dataclasses import dataclass

from loguru import logger

from relay.bot.formatter import format_for_whatsapp
from relay.bot.models import ChangeValue, InboundMessage, WebhookPayload
from relay.bot.parser import MessageKind, normalize_message, parse
from relay.bot.whatsapp import WhatsAppClient
from relay.services.errors import StoreError
from relay.services.idempotency import IdempotencyGuard
from relay.services.query_client import NO_ANSWER, QueryClient
from relay.services.rate_limiter import RateLimiter

GREETING_TEXT = "Hello! Send me any question and I will search for the answer."
THINKING_TEXT = "Thinking..."
ERROR_TEXT = (
    "Sorry, I encountered an error processing your message. Please try again later."
)

MESSAGE_TYPE_NAMES = {
    "image": "images",
    "audio": "audio messages",
    "video": "videos",
    "document": "documents",
    "sticker": "stickers",
    "location": "location messages",
    "contacts": "contact cards",
}


@dataclass
class DispatchReport:
    processed: int = 0
    duplicates: int = 0
    failed: int = 0


class MessageDispatcher:
    """Sequences dedup -> rate limit -> validate -> classify -> query -> reply."""

    def __init__(
        self,
        whatsapp: WhatsAppClient,
        query_client: QueryClient,
        guard: IdempotencyGuard,
        phone_limiter: RateLimiter | None = None,
        max_input_length: int = 4000,
    ):
        self.whatsapp = whatsapp
        self.query_client = query_client
        self.guard = guard
        self.phone_limiter = phone_limiter
        self.max_input_length = max_input_length

    async def handle_payload(self, payload: WebhookPayload) -> DispatchReport:
        """Process every message in a webhook delivery, each at most once."""
        report = DispatchReport()

        if not payload.is_whatsapp:
            logger.debug(f"Ignoring non-WhatsApp webhook object: {payload.object!r}")
            return report

        for message, value in payload.iter_messages():
            try:
                outcome = await self.guard.run_once(
                    message.id,
                    lambda m=message, v=value: self.process_message(m, v),
                )
            except StoreError as e:
                report.failed += 1
                logger.error(f"Error handling webhook message {message.id}: {e}")
                await self._send_quietly(message.from_, ERROR_TEXT)
                continue

            if outcome.duplicate:
                report.duplicates += 1
                logger.info(f"Skipped duplicate message {message.id}")
            else:
                report.processed += 1

        return report

    async def process_message(
        self, message: InboundMessage, value: ChangeValue | None = None
    ) -> None:
        """Handle one new message. Failures end in an apology, never a raise."""
        log = logger.bind(message_id=message.id, sender=message.from_)
        started = time.perf_counter()
        sender = message.from_

        log.info(f"Message received (type={message.type}, length={len(message.body)})")

        if await self._is_rate_limited(sender):
            log.warning("Dropping message from rate limited sender")
            return

        if not message.is_text:
            if message.type and message.type != "text":
                type_name = MESSAGE_TYPE_NAMES.get(message.type, "this type of message")
                await self._send_quietly(
                    sender,
                    f"I can only process text messages. I cannot handle {type_name} yet. "
                    "Please send your question as text.",
                )
            else:
                log.debug("Ignoring empty text message")
            return

        text = message.body.strip()
        if len(text) > self.max_input_length:
            log.warning(
                f"Message exceeds maximum length ({len(text)} > {self.max_input_length})"
            )
            await self._send_quietly(
                sender,
                f"Your message is too long ({len(text)} characters). Please keep your "
                f"questions under {self.max_input_length} characters and try again.",
            )
            return

        try:
            normalized = normalize_message(message, value)
            parsed = parse(text)

            if parsed.kind == MessageKind.GREETING:
                await self.whatsapp.send_text(sender, GREETING_TEXT)
                log.info("Sent greeting response")
            else:
                await self._send_quietly(sender, THINKING_TEXT)

                query_started = time.perf_counter()
                result = await self.query_client.query(normalized)
                log.info(
                    f"Query answered in {(time.perf_counter() - query_started) * 1000:.0f}ms "
                    f"(length={len(result.answer)}, degraded={result.degraded})"
                )

                reply = format_for_whatsapp(result.answer) or NO_ANSWER
                delivery = await self.whatsapp.send_text_chunked(sender, reply)
                log.info(
                    f"Sent response to user ({len(delivery.sent)}/{delivery.total} parts)"
                )
        except Exception as e:
            log.error(f"Error processing message: {type(e).__name__}: {e}")
            await self._send_quietly(sender, ERROR_TEXT)
            return

        log.info(
            f"Message processed successfully in {(time.perf_counter() - started) * 1000:.0f}ms"
        )

    async def _is_rate_limited(self, sender: str) -> bool:
        if self.phone_limiter is None or not sender:
            return False
        try:
            result = await self.phone_limiter.check(f"phone:{sender}")
        except Exception as e:
            # Fail open
            logger.error(f"Rate limiter error for {sender}: {e}")
            return False
        return result.limited

    async def _send_quietly(self, to: str, text: str) -> bool:
        """Send a notice; a failure is logged, not raised."""
        if not to:
            return False
        try:
            await self.whatsapp.send_text(to, text)
            return True
        except Exception as e:
            logger.warning(f"Failed to send notice to {to}: {e}")
            return False
