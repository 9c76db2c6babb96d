import pytest
from pydantic import ValidationError

from hubuum_console.config import Settings


def build(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestSettings:
    def test_backend_base_url_is_required(self, monkeypatch):
        monkeypatch.delenv("BACKEND_BASE_URL", raising=False)

        with pytest.raises(ValidationError):
            build()

    def test_backend_base_url_must_be_http(self):
        with pytest.raises(ValidationError):
            build(BACKEND_BASE_URL="ftp://hubuum.test")

    def test_defaults(self):
        settings = build(BACKEND_BASE_URL="http://hubuum.test:8080", VALKEY_URL=None)

        assert settings.backend_base_url.startswith("http://hubuum.test:8080")
        assert settings.SESSION_TTL_SECONDS == 8 * 60 * 60
        assert settings.SESSION_PREFIX == "hubuum:sess:"
        assert settings.COOKIE_PREFIX == "hubuum"
        assert settings.uses_distributed_sessions is False
        assert settings.is_production is False

    @pytest.mark.parametrize("value", ["", "   "])
    def test_blank_valkey_url_means_standalone(self, value):
        settings = build(BACKEND_BASE_URL="http://hubuum.test", VALKEY_URL=value)

        assert settings.VALKEY_URL is None
        assert settings.uses_distributed_sessions is False
        assert settings.uses_redis is False

    @pytest.mark.parametrize("value", ["redis://valkey:6379/0", "rediss://valkey:6380", "unix:///run/valkey.sock"])
    def test_redis_urls(self, value):
        settings = build(BACKEND_BASE_URL="http://hubuum.test", VALKEY_URL=value)

        assert settings.uses_distributed_sessions is True
        assert settings.uses_redis is True

    def test_memory_url_is_distributed_without_redis(self):
        settings = build(BACKEND_BASE_URL="http://hubuum.test", VALKEY_URL="memory://")

        assert settings.uses_distributed_sessions is True
        assert settings.uses_redis is False

    @pytest.mark.parametrize("value", ["http://valkey:6379", "valkey:6379"])
    def test_unsupported_valkey_scheme(self, value):
        with pytest.raises(ValidationError):
            build(BACKEND_BASE_URL="http://hubuum.test", VALKEY_URL=value)

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_ttl_must_be_positive(self, ttl):
        with pytest.raises(ValidationError):
            build(BACKEND_BASE_URL="http://hubuum.test", SESSION_TTL_SECONDS=ttl)

    def test_log_level_is_normalized(self):
        settings = build(BACKEND_BASE_URL="http://hubuum.test", LOG_LEVEL="debug")

        assert settings.LOG_LEVEL == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            build(BACKEND_BASE_URL="http://hubuum.test", LOG_LEVEL="chatty")

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("BACKEND_BASE_URL", "https://hubuum.example.org")
        monkeypatch.setenv("VALKEY_URL", "redis://valkey:6379")
        monkeypatch.setenv("SESSION_TTL_SECONDS", "900")
        monkeypatch.setenv("APP_ENV", "production")

        settings = build()

        assert settings.backend_base_url.startswith("https://hubuum.example.org")
        assert settings.SESSION_TTL_SECONDS == 900
        assert settings.uses_redis is True
        assert settings.is_production is True
