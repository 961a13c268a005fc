"""Per-client-address request throttling backed by SQLite runtime state."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable

from app.api.errors import ApiError, ApiErrorCode
from app.core.config import SecurityConfig
from app.core.migrations import apply_migrations

LOGGER = logging.getLogger(__name__)

SCOPE_REGISTER = "register"
SCOPE_LOGIN = "login"
SCOPE_PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class RateLimitRule:
    max_hits: int
    window_seconds: int
    message: str


def rules_from_config(config: SecurityConfig) -> dict[str, RateLimitRule]:
    """Build the default scope rules from security settings."""
    return {
        SCOPE_REGISTER: RateLimitRule(
            max_hits=config.register_rate_limit_max,
            window_seconds=config.register_rate_limit_window_seconds,
            message="Too many accounts created from this address. Try again later.",
        ),
        SCOPE_LOGIN: RateLimitRule(
            max_hits=config.login_rate_limit_max,
            window_seconds=config.login_rate_limit_window_seconds,
            message="Too many login attempts. Try again later.",
        ),
        SCOPE_PASSWORD_RESET: RateLimitRule(
            max_hits=config.password_reset_rate_limit_max,
            window_seconds=config.password_reset_rate_limit_window_seconds,
            message="Too many password reset requests. Try again later.",
        ),
    }


class EndpointRateLimiter:
    """Fixed-window counter keyed by (scope, client address)."""

    def __init__(
        self,
        *,
        database_path: Path,
        rules: dict[str, RateLimitRule],
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Apply pending migrations and open the shared connection."""
        apply_migrations(database_path)
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = Lock()
        self._rules = dict(rules)
        self._clock = clock

    def _rule(self, scope: str) -> RateLimitRule:
        try:
            return self._rules[scope]
        except KeyError:
            raise ValueError(f"Unknown rate limit scope: {scope}") from None

    def assert_allowed(self, scope: str, client_ip: str) -> None:
        """Raise 429 while the client has used up the current window."""
        rule = self._rule(scope)
        now = int(self._clock())
        key_ip = client_ip.strip() or "unknown"
        with self._lock:
            row = self._connection.execute(
                """
                SELECT hits, window_started_at
                FROM auth_rate_limits
                WHERE scope = ? AND client_ip = ?
                """,
                (scope, key_ip),
            ).fetchone()
            if row is None:
                return

            window_end = int(row["window_started_at"]) + rule.window_seconds
            if window_end <= now:
                self._connection.execute(
                    "DELETE FROM auth_rate_limits WHERE scope = ? AND client_ip = ?",
                    (scope, key_ip),
                )
                self._connection.commit()
                return

            if int(row["hits"]) < rule.max_hits:
                return

        retry_after = window_end - now
        LOGGER.warning("rate_limited", extra={"scope": scope, "event": key_ip})
        raise ApiError(
            status_code=429,
            error_code=ApiErrorCode.RATE_LIMITED,
            message=rule.message,
            headers={"Retry-After": str(retry_after)},
        )

    def record_hit(self, scope: str, client_ip: str) -> int:
        """Count one request in the current window and return the new total."""
        rule = self._rule(scope)
        now = int(self._clock())
        key_ip = client_ip.strip() or "unknown"
        with self._lock:
            row = self._connection.execute(
                """
                SELECT hits, window_started_at
                FROM auth_rate_limits
                WHERE scope = ? AND client_ip = ?
                """,
                (scope, key_ip),
            ).fetchone()

            if row is None or int(row["window_started_at"]) + rule.window_seconds <= now:
                hits = 1
                window_started_at = now
            else:
                hits = int(row["hits"]) + 1
                window_started_at = int(row["window_started_at"])

            self._connection.execute(
                """
                INSERT INTO auth_rate_limits(
                  scope, client_ip, hits, window_started_at, last_hit_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(scope, client_ip) DO UPDATE SET
                  hits = excluded.hits,
                  window_started_at = excluded.window_started_at,
                  last_hit_at = excluded.last_hit_at
                """,
                (scope, key_ip, hits, window_started_at, now),
            )
            self._connection.commit()
        return hits

    def purge_expired(self) -> int:
        """Delete rows whose window closed; returns the number removed."""
        now = int(self._clock())
        removed = 0
        with self._lock:
            for scope, rule in self._rules.items():
                cursor = self._connection.execute(
                    "DELETE FROM auth_rate_limits WHERE scope = ? AND window_started_at + ? <= ?",
                    (scope, rule.window_seconds, now),
                )
                removed += cursor.rowcount
            self._connection.commit()
        return removed

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()
