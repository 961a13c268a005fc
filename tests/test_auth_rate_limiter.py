from __future__ import annotations

from pathlib import Path

import pytest

from app.api.errors import ApiError, ApiErrorCode
from app.auth.rate_limiter import (
    SCOPE_LOGIN,
    SCOPE_REGISTER,
    EndpointRateLimiter,
    RateLimitRule,
    rules_from_config,
)
from app.core.config import SecurityConfig
from tests.auth_fixtures import FakeClock


def _limiter(tmp_path: Path, clock: FakeClock) -> EndpointRateLimiter:
    return EndpointRateLimiter(
        database_path=tmp_path / "state.db",
        rules={
            SCOPE_REGISTER: RateLimitRule(max_hits=3, window_seconds=900, message="slow down"),
            SCOPE_LOGIN: RateLimitRule(max_hits=2, window_seconds=300, message="too many"),
        },
        clock=clock,
    )


def test_rate_limiter_blocks_after_threshold(tmp_path: Path) -> None:
    clock = FakeClock()
    limiter = _limiter(tmp_path, clock)

    for _ in range(3):
        limiter.assert_allowed(SCOPE_REGISTER, "127.0.0.1")
        limiter.record_hit(SCOPE_REGISTER, "127.0.0.1")

    with pytest.raises(ApiError) as exc:
        limiter.assert_allowed(SCOPE_REGISTER, "127.0.0.1")
    limiter.assert_allowed(SCOPE_REGISTER, "10.0.0.2")
    limiter.close()

    assert exc.value.status_code == 429
    assert exc.value.error_code is ApiErrorCode.RATE_LIMITED
    assert exc.value.message == "slow down"
    assert exc.value.headers == {"Retry-After": "900"}


def test_rate_limiter_window_expires(tmp_path: Path) -> None:
    clock = FakeClock()
    limiter = _limiter(tmp_path, clock)
    limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")
    limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")

    clock.advance(300)
    limiter.assert_allowed(SCOPE_LOGIN, "127.0.0.1")
    hits = limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")
    limiter.close()

    assert hits == 1


def test_rate_limiter_scopes_and_addresses_are_independent(tmp_path: Path) -> None:
    clock = FakeClock()
    limiter = _limiter(tmp_path, clock)
    limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")
    limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")

    limiter.assert_allowed(SCOPE_REGISTER, "127.0.0.1")
    limiter.assert_allowed(SCOPE_LOGIN, "10.0.0.2")
    with pytest.raises(ApiError):
        limiter.assert_allowed(SCOPE_LOGIN, "127.0.0.1")
    limiter.close()


def test_rate_limiter_purges_closed_windows(tmp_path: Path) -> None:
    clock = FakeClock()
    limiter = _limiter(tmp_path, clock)
    limiter.record_hit(SCOPE_LOGIN, "127.0.0.1")
    limiter.record_hit(SCOPE_REGISTER, "127.0.0.1")
    clock.advance(600)

    removed = limiter.purge_expired()
    limiter.close()

    assert removed == 1


def test_rate_limiter_rejects_unknown_scope(tmp_path: Path) -> None:
    limiter = _limiter(tmp_path, FakeClock())

    with pytest.raises(ValueError):
        limiter.record_hit("uploads", "127.0.0.1")
    limiter.close()


def test_rules_from_config_uses_security_settings() -> None:
    rules = rules_from_config(
        SecurityConfig(
            cors_allowed_origins=[],
            request_max_bytes=1024,
            state_sqlite_path="runtime/test.db",
        )
    )

    assert rules[SCOPE_REGISTER].max_hits == 3
    assert rules[SCOPE_REGISTER].window_seconds == 15 * 60
    assert rules[SCOPE_LOGIN].max_hits == 10
    assert rules["password_reset"].window_seconds == 60 * 60
