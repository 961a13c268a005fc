"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEV_PLACEHOLDER_SECRET = "dev-insecure-secret-change-me"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    """Token, password and account-guard settings."""

    access_secret: str
    refresh_secret: str
    issuer: str
    audience: str
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60
    extended_refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    verification_token_ttl_seconds: int = 24 * 60 * 60
    reset_token_ttl_seconds: int = 60 * 60
    password_hash_rounds: int = 120_000
    max_login_attempts: int = 5
    lockout_seconds: int = 15 * 60
    identity_cache_ttl_seconds: int = 5 * 60
    cache_sweep_interval_seconds: int = 60 * 60
    revocation_set_max_entries: int = 10_000


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    state_sqlite_path: str
    register_rate_limit_max: int = 3
    register_rate_limit_window_seconds: int = 15 * 60
    login_rate_limit_max: int = 10
    login_rate_limit_window_seconds: int = 15 * 60
    password_reset_rate_limit_max: int = 3
    password_reset_rate_limit_window_seconds: int = 60 * 60


@dataclass(frozen=True)
class NotificationConfig:
    """Outbound email settings for verification and reset messages."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    from_email: str = ""
    from_name: str = "Petites Annonces CI"
    public_base_url: str = "http://localhost:3000"


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    logging: LoggingConfig
    security: SecurityConfig
    notifications: NotificationConfig
    environment: str = "development"
    api_version: str = "1.0.0"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def validate(self) -> None:
        """Raise ``RuntimeError`` when secrets are unsafe for production."""
        if not self.is_production:
            return
        for name, value in (
            ("AUTH_ACCESS_SECRET", self.auth.access_secret),
            ("AUTH_REFRESH_SECRET", self.auth.refresh_secret),
        ):
            if not value or value.startswith(DEV_PLACEHOLDER_SECRET):
                raise RuntimeError(f"{name} must be set in production")
        if self.auth.access_secret == self.auth.refresh_secret:
            raise RuntimeError(
                "AUTH_ACCESS_SECRET and AUTH_REFRESH_SECRET must differ in production"
            )

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        environment = os.getenv("APP_ENV", "development").strip().lower() or "development"
        access_secret = (
            os.getenv("AUTH_ACCESS_SECRET", "").strip() or DEV_PLACEHOLDER_SECRET
        )
        refresh_secret = (
            os.getenv("AUTH_REFRESH_SECRET", "").strip()
            or f"{DEV_PLACEHOLDER_SECRET}-refresh"
        )
        issuer = os.getenv("AUTH_ISSUER", "petites-annonces-ci").strip() or "petites-annonces-ci"
        audience = (
            os.getenv("AUTH_AUDIENCE", "petites-annonces-ci-users").strip()
            or "petites-annonces-ci-users"
        )
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]

        return AppConfig(
            auth=AuthConfig(
                access_secret=access_secret,
                refresh_secret=refresh_secret,
                issuer=issuer,
                audience=audience,
                access_token_ttl_seconds=_env_int("AUTH_ACCESS_TOKEN_TTL_SECONDS", 900),
                refresh_token_ttl_seconds=_env_int(
                    "AUTH_REFRESH_TOKEN_TTL_SECONDS", 7 * 24 * 60 * 60
                ),
                extended_refresh_token_ttl_seconds=_env_int(
                    "AUTH_EXTENDED_REFRESH_TOKEN_TTL_SECONDS", 30 * 24 * 60 * 60
                ),
                verification_token_ttl_seconds=_env_int(
                    "AUTH_VERIFICATION_TOKEN_TTL_SECONDS", 24 * 60 * 60
                ),
                reset_token_ttl_seconds=_env_int("AUTH_RESET_TOKEN_TTL_SECONDS", 3600),
                password_hash_rounds=_env_int("AUTH_PASSWORD_HASH_ROUNDS", 120_000),
                max_login_attempts=_env_int("AUTH_MAX_LOGIN_ATTEMPTS", 5),
                lockout_seconds=_env_int("AUTH_LOCKOUT_SECONDS", 900),
                identity_cache_ttl_seconds=_env_int("AUTH_IDENTITY_CACHE_TTL_SECONDS", 300),
                cache_sweep_interval_seconds=_env_int(
                    "AUTH_CACHE_SWEEP_INTERVAL_SECONDS", 3600
                ),
                revocation_set_max_entries=_env_int(
                    "AUTH_REVOCATION_SET_MAX_ENTRIES", 10_000
                ),
            ),
            logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=_env_int("REQUEST_MAX_BYTES", 1024 * 1024),
                state_sqlite_path=(
                    os.getenv("STATE_SQLITE_PATH", "runtime/app_state.db").strip()
                    or "runtime/app_state.db"
                ),
                register_rate_limit_max=_env_int("REGISTER_RATE_LIMIT_MAX", 3),
                register_rate_limit_window_seconds=_env_int(
                    "REGISTER_RATE_LIMIT_WINDOW_SECONDS", 900
                ),
                login_rate_limit_max=_env_int("LOGIN_RATE_LIMIT_MAX", 10),
                login_rate_limit_window_seconds=_env_int(
                    "LOGIN_RATE_LIMIT_WINDOW_SECONDS", 900
                ),
                password_reset_rate_limit_max=_env_int("PASSWORD_RESET_RATE_LIMIT_MAX", 3),
                password_reset_rate_limit_window_seconds=_env_int(
                    "PASSWORD_RESET_RATE_LIMIT_WINDOW_SECONDS", 3600
                ),
            ),
            notifications=NotificationConfig(
                smtp_host=os.getenv("SMTP_HOST", "").strip(),
                smtp_port=_env_int("SMTP_PORT", 587),
                smtp_user=os.getenv("SMTP_USER", "").strip(),
                smtp_password=os.getenv("SMTP_PASSWORD", ""),
                smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
                from_email=os.getenv("SMTP_FROM_EMAIL", "").strip(),
                from_name=os.getenv("SMTP_FROM_NAME", "Petites Annonces CI").strip()
                or "Petites Annonces CI",
                public_base_url=(
                    os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").strip().rstrip("/")
                    or "http://localhost:3000"
                ),
            ),
            environment=environment,
            api_version=os.getenv("API_VERSION", "1.0.0").strip() or "1.0.0",
        )
