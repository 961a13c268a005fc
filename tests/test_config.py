from __future__ import annotations

import dataclasses

import pytest

from app.core.config import DEV_PLACEHOLDER_SECRET, AppConfig


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("APP_ENV", "AUTH_ACCESS_SECRET", "AUTH_REFRESH_SECRET", "SMTP_USE_TLS"):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.from_env()

    assert config.is_development
    assert config.auth.access_token_ttl_seconds == 900
    assert config.auth.refresh_token_ttl_seconds == 7 * 24 * 60 * 60
    assert config.auth.max_login_attempts == 5
    assert config.auth.lockout_seconds == 900
    assert config.auth.identity_cache_ttl_seconds == 300
    assert config.auth.access_secret != config.auth.refresh_secret
    assert config.notifications.smtp_use_tls is True
    config.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "Production")
    monkeypatch.setenv("AUTH_ACCESS_SECRET", "a" * 40)
    monkeypatch.setenv("AUTH_REFRESH_SECRET", "b" * 40)
    monkeypatch.setenv("AUTH_MAX_LOGIN_ATTEMPTS", "3")
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://annonces.ci, https://admin.annonces.ci")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://annonces.ci/")
    monkeypatch.setenv("SMTP_USE_TLS", "no")

    config = AppConfig.from_env()

    assert config.is_production
    assert config.auth.max_login_attempts == 3
    assert config.security.cors_allowed_origins == ["https://annonces.ci", "https://admin.annonces.ci"]
    assert config.notifications.public_base_url == "https://annonces.ci"
    assert config.notifications.smtp_use_tls is False
    config.validate()


def test_validate_refuses_placeholder_secrets_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("AUTH_ACCESS_SECRET", raising=False)
    monkeypatch.setenv("AUTH_REFRESH_SECRET", "b" * 40)

    config = AppConfig.from_env()

    assert config.auth.access_secret == DEV_PLACEHOLDER_SECRET
    with pytest.raises(RuntimeError, match="AUTH_ACCESS_SECRET"):
        config.validate()


def test_validate_refuses_shared_secret_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("AUTH_ACCESS_SECRET", "s" * 40)
    monkeypatch.setenv("AUTH_REFRESH_SECRET", "s" * 40)

    with pytest.raises(RuntimeError, match="must differ"):
        AppConfig.from_env().validate()


def test_config_is_immutable() -> None:
    config = AppConfig.from_env()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.environment = "production"  # type: ignore[misc]
