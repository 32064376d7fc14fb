"""FastAPI server for WhatsApp webhook deliveries and health probes."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator

from fastapi import BackgroundTasks, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import ValidationError

from relay.bot.models import WebhookPayload
from relay.bot.signature import verify_signature
from relay.exceptions import (
    InvalidPayloadError,
    InvalidSignatureError,
    TooManyRequestsError,
    VerificationFailedError,
)
from relay.settings import Settings, get_settings

if TYPE_CHECKING:
    from relay.container import RelayContainer

SERVICE_NAME = "whatsapp-relay"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RelayServer:
    """HTTP server for handling WhatsApp webhook events."""

    def __init__(self, container: "RelayContainer"):
        self.container = container
        self.settings = container.settings
        self.app = FastAPI(title="WhatsApp Relay", lifespan=self._lifespan)

        # Register routes
        self.app.get("/")(self.root)
        self.app.get("/health")(self.health_check)
        self.app.get("/live")(self.liveness)
        self.app.get("/ready")(self.readiness)
        self.app.get("/webhook")(self.verify_webhook)
        self.app.post("/webhook")(self.handle_webhook)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        await self.container.start()
        try:
            yield
        finally:
            await self.container.close()

    async def _enforce_ip_limit(self, request: Request) -> dict[str, str]:
        ip = client_ip(request)
        try:
            result = await self.container.webhook_limiter.check(f"ip:{ip}")
        except Exception as e:
            # Fail open
            logger.error(f"Rate limiter error for {ip}: {e}")
            return {}
        if result.limited:
            raise TooManyRequestsError(result.reset_after, headers=result.headers())
        return result.headers()

    async def verify_webhook(
        self,
        request: Request,
        hub_mode: str | None = Query(None, alias="hub.mode"),
        hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
        hub_challenge: str | None = Query(None, alias="hub.challenge"),
    ) -> PlainTextResponse:
        """Meta subscription handshake: echo the challenge if the token matches."""
        await self._enforce_ip_limit(request)
        expected = self.settings.webhook_verify_token.strip()

        if hub_mode == "subscribe" and expected and hub_verify_token == expected:
            logger.info("Webhook verified successfully")
            return PlainTextResponse(hub_challenge or "")

        logger.warning(f"Webhook verification rejected (mode={hub_mode!r})")
        raise VerificationFailedError()

    async def handle_webhook(
        self,
        request: Request,
        background_tasks: BackgroundTasks,
        x_hub_signature_256: str | None = Header(None),
    ) -> PlainTextResponse:
        """Acknowledge a delivery at once and process it in the background."""
        headers = await self._enforce_ip_limit(request)
        raw_body = await request.body()

        if not verify_signature(
            raw_body, x_hub_signature_256, self.settings.whatsapp_app_secret
        ):
            logger.warning(
                f"Invalid webhook signature ({'present' if x_hub_signature_256 else 'missing'})"
            )
            raise InvalidSignatureError()

        try:
            body = json.loads(raw_body)
        except ValueError as e:
            raise InvalidPayloadError() from e

        try:
            payload = WebhookPayload.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed webhook payload: {e.error_count()} errors")
            return PlainTextResponse("OK", headers=headers)

        background_tasks.add_task(self.container.dispatcher.handle_payload, payload)
        return PlainTextResponse("OK", headers=headers)

    async def root(self) -> dict:
        return {"status": "ok", "service": SERVICE_NAME}

    async def health_check(self) -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    async def liveness(self) -> dict:
        return {
            "status": "alive",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def readiness(self) -> JSONResponse:
        """Ready unless required settings are missing; degraded while a circuit is open."""
        status = "ready"
        checks: dict = {}

        checks["store"] = self.container.store.get_status()

        open_circuits = self.container.breakers.get_open_circuits()
        checks["circuit_breakers"] = {
            "status": "open" if open_circuits else "closed",
            "open": open_circuits,
            "breakers": self.container.breakers.get_all_status(),
            "healthy": not open_circuits,
        }
        if open_circuits:
            status = "degraded"

        missing = self.settings.missing_required()
        checks["environment"] = {
            "status": "ok" if not missing else "missing_vars",
            "missing_vars": missing,
            "healthy": not missing,
        }
        if missing:
            status = "not_ready"

        return JSONResponse(
            {
                "service": SERVICE_NAME,
                "status": status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks,
            },
            status_code=503 if missing else 200,
        )


def create_app(
    settings: Settings | None = None, container: "RelayContainer | None" = None
) -> FastAPI:
    """Build the FastAPI app around a container.

    Args:
        settings: Used to build a container when none is given
        container: Pre-built container (tests inject fakes here)

    Returns:
        FastAPI app
    """
    if container is None:
        from relay.container import RelayContainer

        container = RelayContainer.from_settings(settings or get_settings())
    return RelayServer(container).app
