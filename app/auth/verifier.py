"""Access-token verification with identity cache and defensive revocation."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from app.api.errors import ApiError, ApiErrorCode
from app.auth.models import AuthContext, Identity, IdentityStatus, TokenInfo, TokenPurpose
from app.auth.session_cache import IdentityCache, RevocationList
from app.auth.tokens import TokenIssuer
from app.core.detached import DetachedTaskRunner

LOGGER = logging.getLogger(__name__)


class IdentityLookup(Protocol):
    def get_identity(self, identity_id: str) -> Identity | None: ...

    def touch_last_seen(self, identity_id: str, seen_at: int) -> None: ...


class TokenVerifier:
    """Resolve a bearer access token into an authenticated caller.

    Order of checks: signature/expiry/purpose, revocation list, identity
    lookup (cache first), account status, embedded email.
    """

    def __init__(
        self,
        *,
        issuer: TokenIssuer,
        identities: IdentityLookup,
        cache: IdentityCache,
        revocations: RevocationList,
        runner: DetachedTaskRunner,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._issuer = issuer
        self._identities = identities
        self._cache = cache
        self._revocations = revocations
        self._runner = runner
        self._clock = clock

    def authenticate(self, token: str) -> AuthContext:
        """Return the caller for ``token`` or raise ``ApiError``."""
        if not token:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
                message="Missing bearer token",
            )

        claims = self._issuer.decode(token, TokenPurpose.ACCESS)

        if self._revocations.is_revoked(claims.jti):
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_REVOKED,
                message="Token has been revoked, please log in again",
            )

        identity = self._cache.get(claims.sub)
        if identity is None:
            identity = self._identities.get_identity(claims.sub)
            if identity is not None:
                self._cache.set(identity)

        if identity is None:
            self._revoke(claims.jti, claims.exp, claims.sub)
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_IDENTITY_NOT_FOUND,
                message="This account no longer exists",
            )

        if identity.status is IdentityStatus.SUSPENDED:
            raise ApiError(
                status_code=403,
                error_code=ApiErrorCode.ACCOUNT_SUSPENDED,
                message="Your account has been suspended. Contact support.",
            )

        if identity.status is IdentityStatus.DELETED:
            self._revoke(claims.jti, claims.exp, claims.sub)
            raise ApiError(
                status_code=403,
                error_code=ApiErrorCode.ACCOUNT_DELETED,
                message="This account has been deleted",
            )

        if identity.email != claims.email:
            LOGGER.warning(
                "token_email_mismatch",
                extra={"identity_id": identity.identity_id},
            )
            self._revoke(claims.jti, claims.exp, claims.sub)
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_STALE,
                message="Token no longer matches the account, please log in again",
            )

        self._runner.submit(
            "identity.touch_last_seen",
            self._identities.touch_last_seen,
            identity.identity_id,
            int(self._clock()),
        )
        return AuthContext(
            identity=identity,
            token=TokenInfo(jti=claims.jti, iat=claims.iat, exp=claims.exp),
            raw_token=token,
        )

    def revoke_token(self, jti: str, expires_at: int) -> None:
        """Add a stateless token to the revocation list."""
        self._revocations.revoke(jti, expires_at)

    def is_token_revoked(self, jti: str) -> bool:
        return self._revocations.is_revoked(jti)

    def forget_identity(self, identity_id: str) -> None:
        """Drop a cached snapshot after the identity changed."""
        self._cache.invalidate(identity_id)

    def _revoke(self, jti: str, expires_at: int, identity_id: str) -> None:
        self._revocations.revoke(jti, expires_at)
        self._cache.invalidate(identity_id)
