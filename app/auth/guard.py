"""Per-identity failed-login counter and temporary lockout."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Protocol

from app.api.errors import ApiError, ApiErrorCode
from app.auth.models import Identity

LOGGER = logging.getLogger(__name__)


class GuardStore(Protocol):
    def update_identity(self, identity_id: str, **fields: Any) -> Identity | None: ...


class AccountGuard:
    """Lock an identity for ``lockout_seconds`` after ``max_attempts`` failures.

    The counter is keyed per identity, not per client address, so repeated
    failures from anyone lock the owner out as well.
    """

    def __init__(
        self,
        store: GuardStore,
        *,
        max_attempts: int,
        lockout_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max_attempts = max(1, int(max_attempts))
        self._lockout_seconds = max(1, int(lockout_seconds))
        self._clock = clock

    def remaining_lockout_seconds(self, identity: Identity) -> int:
        if not identity.lockout_until:
            return 0
        return max(0, int(identity.lockout_until - self._clock()))

    def assert_not_locked(self, identity: Identity) -> None:
        """Reject immediately while the lockout window is open."""
        remaining = self.remaining_lockout_seconds(identity)
        if remaining <= 0:
            return
        minutes = max(1, math.ceil(remaining / 60))
        raise ApiError(
            status_code=403,
            error_code=ApiErrorCode.AUTH_ACCOUNT_LOCKED,
            message=f"Account temporarily locked. Try again in {minutes} minutes.",
            headers={"Retry-After": str(remaining)},
        )

    def record_failure(self, identity: Identity) -> Identity:
        """Count a failed password check and lock when the threshold is reached."""
        now = int(self._clock())
        attempts = identity.login_attempts
        if identity.lockout_until and identity.lockout_until <= now:
            # The previous lockout has elapsed; start a new series.
            attempts = 0
        attempts += 1

        lockout_until = now + self._lockout_seconds if attempts >= self._max_attempts else None

        updated = self._store.update_identity(
            identity.identity_id,
            login_attempts=attempts,
            lockout_until=lockout_until,
        )
        if attempts >= self._max_attempts:
            LOGGER.warning(
                "identity_locked_out",
                extra={"identity_id": identity.identity_id, "event": str(attempts)},
            )
        return updated or identity.model_copy(
            update={"login_attempts": attempts, "lockout_until": lockout_until}
        )

    def reset(self, identity: Identity, **extra_fields: Any) -> Identity:
        """Clear counter and lockout after a successful authentication."""
        updated = self._store.update_identity(
            identity.identity_id,
            login_attempts=0,
            lockout_until=None,
            **extra_fields,
        )
        return updated or identity.model_copy(
            update={"login_attempts": 0, "lockout_until": None, **extra_fields}
        )
