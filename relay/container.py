"""Composition root: builds every long-lived object from Settings."""

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger

from relay.bot.dispatcher import MessageDispatcher
from relay.bot.whatsapp import WhatsAppClient
from relay.services.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from relay.services.idempotency import IdempotencyGuard
from relay.services.query_client import QueryClient
from relay.services.rate_limiter import RateLimiter
from relay.services.retry import RetryPolicy, default_should_retry, retry_on_rate_limit
from relay.services.store import FallbackTTLStore, build_store
from relay.settings import Settings


@dataclass
class RelayContainer:
    settings: Settings
    store: FallbackTTLStore
    breakers: CircuitBreakerRegistry
    whatsapp: WhatsAppClient
    query_client: QueryClient
    dispatcher: MessageDispatcher
    webhook_limiter: RateLimiter

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayContainer":
        store = build_store(
            settings.redis_url,
            operation_timeout=settings.redis_operation_timeout,
            sweep_interval=timedelta(minutes=settings.store_sweep_interval_minutes),
        )

        breakers = CircuitBreakerRegistry()
        query_breaker = breakers.get(
            QueryClient.SERVICE_ID,
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                success_threshold=settings.circuit_success_threshold,
                open_duration=timedelta(milliseconds=settings.circuit_open_duration_ms),
                half_open_duration=timedelta(
                    milliseconds=settings.circuit_half_open_duration_ms
                ),
            ),
        )

        query_client = QueryClient(
            endpoint=settings.query_endpoint if settings.query_api_url else "",
            breaker=query_breaker,
            token=settings.query_api_token,
            policy=RetryPolicy(
                timeout=settings.query_api_timeout_ms / 1000,
                max_retries=settings.query_api_max_retries,
                retry_delay=settings.query_api_retry_delay_ms / 1000,
                should_retry=default_should_retry,
            ),
        )
        whatsapp = WhatsAppClient(
            access_token=settings.whatsapp_api_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            base_url=settings.whatsapp_api_base,
            api_version=settings.whatsapp_api_version,
            policy=RetryPolicy(
                timeout=settings.whatsapp_api_timeout_ms / 1000,
                max_retries=settings.whatsapp_api_max_retries,
                retry_delay=settings.whatsapp_api_retry_delay_ms / 1000,
                should_retry=retry_on_rate_limit,
            ),
            chunk_delay=settings.chunk_delay_ms / 1000,
            splitting_enabled=settings.enable_message_splitting,
        )

        dispatcher = MessageDispatcher(
            whatsapp=whatsapp,
            query_client=query_client,
            guard=IdempotencyGuard(store),
            phone_limiter=RateLimiter(
                store,
                max_requests=settings.phone_rate_limit_max,
                window_seconds=settings.phone_rate_limit_window,
            ),
            max_input_length=settings.max_input_message_length,
        )

        return cls(
            settings=settings,
            store=store,
            breakers=breakers,
            whatsapp=whatsapp,
            query_client=query_client,
            dispatcher=dispatcher,
            webhook_limiter=RateLimiter(
                store,
                max_requests=settings.webhook_rate_limit_max,
                window_seconds=settings.webhook_rate_limit_window,
            ),
        )

    async def start(self) -> None:
        await self.store.connect()
        self.store.local.start_sweeper()
        logger.info("Relay started")

    async def close(self) -> None:
        await self.whatsapp.close()
        await self.query_client.close()
        await self.store.close()
        logger.info("Relay stopped")
