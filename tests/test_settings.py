"""
Tests for environment-driven Settings.
"""

import pytest
from pydantic import ValidationError

from relay.settings import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings.model_validate({})

        assert settings.port == 3000
        assert settings.whatsapp_api_version == "v18.0"
        assert settings.query_api_timeout_ms == 30000
        assert settings.circuit_failure_threshold == 5
        assert settings.redis_url is None

    def test_reads_env_names(self):
        settings = Settings.model_validate(
            {
                "PORT": "8080",
                "WHATSAPP_API_TOKEN": "token",
                "QUERY_CIRCUIT_BREAKER_FAILURE_THRESHOLD": "3",
                "ENABLE_MESSAGE_SPLITTING": "false",
                "REDIS_URL": "redis://cache:6379/0",
            }
        )

        assert settings.port == 8080
        assert settings.whatsapp_api_token == "token"
        assert settings.circuit_failure_threshold == 3
        assert settings.enable_message_splitting is False
        assert settings.redis_url == "redis://cache:6379/0"

    def test_deprecated_names_still_work(self):
        settings = Settings.model_validate(
            {"WHATSAPP_TOKEN": "old-token", "PHONE_NUMBER_ID": "123"}
        )

        assert settings.whatsapp_api_token == "old-token"
        assert settings.whatsapp_phone_number_id == "123"

    def test_new_name_wins_over_deprecated(self):
        settings = Settings.model_validate(
            {"WHATSAPP_TOKEN": "old", "WHATSAPP_API_TOKEN": "new"}
        )
        assert settings.whatsapp_api_token == "new"

    @pytest.mark.parametrize(
        "name, value",
        [
            ("WHATSAPP_API_TIMEOUT_MS", "60001"),
            ("WHATSAPP_API_MAX_RETRIES", "6"),
            ("QUERY_API_MAX_RETRIES", "11"),
            ("QUERY_CIRCUIT_BREAKER_FAILURE_THRESHOLD", "0"),
            ("QUERY_CIRCUIT_BREAKER_SUCCESS_THRESHOLD", "11"),
        ],
    )
    def test_out_of_range_rejected(self, name, value):
        with pytest.raises(ValidationError):
            Settings.model_validate({name: value})

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://q.example.com", "https://q.example.com/api/ui/query"),
            ("https://q.example.com/", "https://q.example.com/api/ui/query"),
            ("https://q.example.com/api/ui/query", "https://q.example.com/api/ui/query"),
        ],
    )
    def test_query_endpoint(self, url, expected):
        assert Settings(query_api_url=url).query_endpoint == expected

    def test_missing_required(self):
        settings = Settings(webhook_verify_token="t", query_api_url="https://q")

        assert settings.missing_required() == [
            "WHATSAPP_API_TOKEN",
            "WHATSAPP_PHONE_NUMBER_ID",
        ]

    @pytest.mark.parametrize("token", ["", "   ", "changeme", "Your_Webhook_Verify_Token_Here"])
    def test_validate_for_serving_rejects_bad_token(self, token):
        with pytest.raises(ValueError):
            Settings(webhook_verify_token=token).validate_for_serving()

    def test_validate_for_serving_accepts_real_token(self):
        Settings(webhook_verify_token="a-real-token").validate_for_serving()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_VERIFY_TOKEN", "from-env")
        monkeypatch.setenv("CHUNK_DELAY_MS", "250")

        settings = Settings.from_env()

        assert settings.webhook_verify_token == "from-env"
        assert settings.chunk_delay_ms == 250
