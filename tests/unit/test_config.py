"""Unit tests for configuration and settings."""
import pytest

from common.config import Settings, get_settings, reset_settings_cache


class TestSettings:
    """Test configuration management."""

    def test_get_settings_returns_same_instance(self):
        assert get_settings() is get_settings()

    def test_reset_settings_cache(self):
        settings1 = get_settings()
        reset_settings_cache()
        settings2 = get_settings()

        assert settings1 is not settings2

    def test_jwt_configuration(self):
        settings = get_settings()

        assert settings.jwt_secret
        assert settings.jwt_algorithm == "HS256"
        assert settings.access_token_expire_minutes > 0

    def test_rate_limiting_configuration(self):
        settings = get_settings()

        assert settings.rate_limiting_enabled is False
        assert settings.default_rate_limit

    def test_service_ports_configuration(self):
        settings = get_settings()

        assert settings.users_service_port == 8001
        assert settings.hotels_service_port == 8002
        assert settings.bookings_service_port == 8003
        assert settings.guests_service_port == 8004
        assert settings.billing_service_port == 8005

    def test_gateway_defaults(self):
        settings = get_settings()

        assert settings.moyasar_currency == "SAR"
        assert settings.moyasar_supported_networks == ["mada", "visa", "mastercard"]
        assert settings.moyasar_timeout > 0


class TestGatewayUrls:
    @pytest.mark.parametrize(
        "environment, expected",
        [
            ("development", "https://api.sandbox.moyasar.com/v1/"),
            ("test", "https://api.sandbox.moyasar.com/v1/"),
            ("production", "https://api.moyasar.com/v1/"),
        ],
    )
    def test_gateway_base_url_follows_environment(self, environment, expected):
        settings = Settings(environment=environment, moyasar_api_url="")

        assert settings.gateway_base_url == expected

    def test_explicit_gateway_url_wins(self):
        settings = Settings(moyasar_api_url="http://gateway.local/v1")

        assert settings.gateway_base_url == "http://gateway.local/v1/"

    def test_test_key_detection(self):
        assert Settings(moyasar_secret_key="sk_test_abc").uses_test_gateway_key is True
        assert Settings(moyasar_secret_key="sk_live_abc").uses_test_gateway_key is False
        assert Settings(environment="production").is_production is True
