import os
from functools import lru_cache

from dotenv import load_dotenv
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

load_dotenv()

PLACEHOLDER_VALUES = (
    "your_webhook_verify_token_here",
    "your webhook verify token here",
    "webhook_verify_token",
    "verify_token",
    "placeholder",
    "changeme",
    "replace_me",
)

# Old variable name -> current name
DEPRECATED_ALIASES = {
    "WHATSAPP_TOKEN": "WHATSAPP_API_TOKEN",
    "PHONE_NUMBER_ID": "WHATSAPP_PHONE_NUMBER_ID",
}

REQUIRED_VARIABLES = {
    "whatsapp_api_token": "WHATSAPP_API_TOKEN",
    "whatsapp_phone_number_id": "WHATSAPP_PHONE_NUMBER_ID",
    "webhook_verify_token": "WEBHOOK_VERIFY_TOKEN",
    "query_api_url": "QUERY_API_URL",
}


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Server
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, alias="JSON_LOGS")

    # Webhook
    webhook_verify_token: str = Field(default="", alias="WEBHOOK_VERIFY_TOKEN")
    whatsapp_app_secret: str = Field(default="", alias="WHATSAPP_APP_SECRET")
    max_input_message_length: int = Field(
        default=4000, ge=1, alias="MAX_INPUT_MESSAGE_LENGTH"
    )

    # WhatsApp Cloud API
    whatsapp_api_token: str = Field(
        default="",
        validation_alias=AliasChoices("WHATSAPP_API_TOKEN", "WHATSAPP_TOKEN"),
    )
    whatsapp_phone_number_id: str = Field(
        default="",
        validation_alias=AliasChoices("WHATSAPP_PHONE_NUMBER_ID", "PHONE_NUMBER_ID"),
    )
    whatsapp_api_base: str = Field(
        default="https://graph.facebook.com", alias="WHATSAPP_API_BASE"
    )
    whatsapp_api_version: str = Field(default="v18.0", alias="WHATSAPP_API_VERSION")
    whatsapp_api_timeout_ms: int = Field(
        default=15000, ge=1, le=60000, alias="WHATSAPP_API_TIMEOUT_MS"
    )
    whatsapp_api_max_retries: int = Field(
        default=2, ge=0, le=5, alias="WHATSAPP_API_MAX_RETRIES"
    )
    whatsapp_api_retry_delay_ms: int = Field(
        default=1000, ge=0, alias="WHATSAPP_API_RETRY_DELAY_MS"
    )
    enable_message_splitting: bool = Field(
        default=True, alias="ENABLE_MESSAGE_SPLITTING"
    )
    chunk_delay_ms: int = Field(default=500, ge=0, alias="CHUNK_DELAY_MS")

    # Downstream query API
    query_api_url: str = Field(default="", alias="QUERY_API_URL")
    query_api_path: str = Field(default="/api/ui/query", alias="QUERY_API_PATH")
    query_api_token: str = Field(default="", alias="QUERY_API_TOKEN")
    query_api_timeout_ms: int = Field(
        default=30000, ge=1, le=300000, alias="QUERY_API_TIMEOUT_MS"
    )
    query_api_max_retries: int = Field(
        default=3, ge=0, le=10, alias="QUERY_API_MAX_RETRIES"
    )
    query_api_retry_delay_ms: int = Field(
        default=1000, ge=0, alias="QUERY_API_RETRY_DELAY_MS"
    )

    # Circuit breaker guarding the query API
    circuit_failure_threshold: int = Field(
        default=5, ge=1, le=50, alias="QUERY_CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_success_threshold: int = Field(
        default=2, ge=1, le=10, alias="QUERY_CIRCUIT_BREAKER_SUCCESS_THRESHOLD"
    )
    circuit_open_duration_ms: int = Field(
        default=60000, ge=1, alias="QUERY_CIRCUIT_BREAKER_TIMEOUT_MS"
    )
    circuit_half_open_duration_ms: int = Field(
        default=30000, ge=1, alias="QUERY_CIRCUIT_BREAKER_RESET_TIMEOUT_MS"
    )

    # TTL store
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    redis_operation_timeout: float = Field(
        default=2.0, gt=0, alias="REDIS_OPERATION_TIMEOUT"
    )
    store_sweep_interval_minutes: int = Field(
        default=60, ge=1, alias="STORE_SWEEP_INTERVAL_MINUTES"
    )

    # Rate limiting
    webhook_rate_limit_max: int = Field(default=1000, ge=1, alias="WEBHOOK_RATE_LIMIT_MAX")
    webhook_rate_limit_window: int = Field(
        default=900, ge=1, alias="WEBHOOK_RATE_LIMIT_WINDOW_SECONDS"
    )
    phone_rate_limit_max: int = Field(default=10, ge=1, alias="PHONE_RATE_LIMIT_MAX")
    phone_rate_limit_window: int = Field(
        default=60, ge=1, alias="PHONE_RATE_LIMIT_WINDOW_SECONDS"
    )

    @model_validator(mode="before")
    @classmethod
    def _warn_deprecated_names(cls, data):
        if isinstance(data, dict):
            for old, new in DEPRECATED_ALIASES.items():
                if data.get(old) and not data.get(new):
                    logger.warning(
                        f"DEPRECATED: {old} is deprecated. Please use {new} instead."
                    )
        return data

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and .env)."""
        return cls.model_validate(dict(os.environ))

    @property
    def query_endpoint(self) -> str:
        url = self.query_api_url
        if self.query_api_path and self.query_api_path not in url:
            url = url.rstrip("/") + self.query_api_path
        return url

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset."""
        return [
            env_name
            for field_name, env_name in REQUIRED_VARIABLES.items()
            if not getattr(self, field_name)
        ]

    def validate_for_serving(self) -> None:
        """Fail fast on configuration the webhook cannot run without."""
        token = self.webhook_verify_token.strip()
        if not token:
            raise ValueError(
                "WEBHOOK_VERIFY_TOKEN environment variable is required but not set or empty"
            )
        if token.lower() in PLACEHOLDER_VALUES:
            raise ValueError(
                f'WEBHOOK_VERIFY_TOKEN appears to be a placeholder value: "{token}"'
            )
        if not self.whatsapp_app_secret:
            logger.warning(
                "WHATSAPP_APP_SECRET not set, webhook signatures will not be verified"
            )
        if not self.query_api_token:
            logger.warning(
                "QUERY_API_TOKEN is not set - requests will be sent without authentication"
            )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
