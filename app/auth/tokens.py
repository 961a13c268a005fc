"""Signed token issuance and decoding for every token purpose."""

from __future__ import annotations

import time
import uuid
from typing import Callable, Protocol

from pydantic import ValidationError

from app.api.errors import ApiError, ApiErrorCode
from app.auth.models import (
    Identity,
    RefreshTokenRecord,
    SessionTokens,
    TokenClaims,
    TokenPurpose,
)
from app.core.config import AuthConfig
from app.core.security import (
    TokenError,
    build_signed_token,
    decode_signed_token,
    hash_token,
    peek_unverified_claims,
)


class RefreshTokenStore(Protocol):
    def save_refresh_token(self, record: RefreshTokenRecord) -> None: ...


def _token_error(error_code: ApiErrorCode, message: str) -> ApiError:
    return ApiError(status_code=401, error_code=error_code, message=message)


class TokenIssuer:
    """Create and decode purpose-tagged signed tokens.

    Refresh tokens are signed with their own secret and persisted so they can
    be revoked before expiry; every other purpose is stateless.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        config: AuthConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    def _secret_for(self, purpose: TokenPurpose) -> str:
        if purpose is TokenPurpose.REFRESH:
            return self._config.refresh_secret
        return self._config.access_secret

    def issue(
        self,
        identity: Identity,
        purpose: TokenPurpose,
        ttl_seconds: int,
        *,
        extended: bool = False,
    ) -> str:
        """Sign a token for ``identity``; refresh tokens are also persisted."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        purpose = TokenPurpose(purpose)
        now_ts = int(self._clock())
        jti = uuid.uuid4().hex
        payload = {
            "iss": self._config.issuer,
            "aud": self._config.audience,
            "sub": identity.identity_id,
            "email": identity.email,
            "type": purpose.value,
            "iat": now_ts,
            "exp": now_ts + int(ttl_seconds),
            "jti": jti,
        }
        token = build_signed_token(payload, self._secret_for(purpose))

        if purpose is TokenPurpose.REFRESH:
            self._store.save_refresh_token(
                RefreshTokenRecord(
                    token_hash=hash_token(token),
                    jti=jti,
                    identity_id=identity.identity_id,
                    expires_at=payload["exp"],
                    created_at=now_ts,
                    extended=extended,
                )
            )
        return token

    def issue_session_pair(self, identity: Identity, *, extended: bool = False) -> SessionTokens:
        """Issue the access/refresh pair used by login, register and refresh."""
        refresh_ttl = (
            self._config.extended_refresh_token_ttl_seconds
            if extended
            else self._config.refresh_token_ttl_seconds
        )
        access_token = self.issue(
            identity, TokenPurpose.ACCESS, self._config.access_token_ttl_seconds
        )
        refresh_token = self.issue(
            identity, TokenPurpose.REFRESH, refresh_ttl, extended=extended
        )
        return SessionTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=self._config.access_token_ttl_seconds,
            refresh_expires_in=refresh_ttl,
        )

    def decode(self, token: str, expected: TokenPurpose) -> TokenClaims:
        """Verify signature, expiry, issuer, audience and purpose of a token."""
        try:
            claimed = peek_unverified_claims(token)
            claimed_purpose = TokenPurpose(str(claimed.get("type") or ""))
        except (TokenError, ValueError) as exc:
            raise _token_error(ApiErrorCode.AUTH_TOKEN_MALFORMED, "Invalid token format") from exc

        try:
            payload = decode_signed_token(
                token, self._secret_for(claimed_purpose), now=self._clock()
            )
        except TokenError as exc:
            if exc.kind == TokenError.EXPIRED:
                raise _token_error(ApiErrorCode.AUTH_TOKEN_EXPIRED, "Token expired") from exc
            raise _token_error(ApiErrorCode.AUTH_TOKEN_MALFORMED, "Invalid token format") from exc

        if str(payload.get("iss") or "") != self._config.issuer:
            raise _token_error(ApiErrorCode.AUTH_TOKEN_MALFORMED, "Invalid token issuer")
        if str(payload.get("aud") or "") != self._config.audience:
            raise _token_error(ApiErrorCode.AUTH_TOKEN_MALFORMED, "Invalid token audience")
        if claimed_purpose is not expected:
            raise _token_error(
                ApiErrorCode.AUTH_TOKEN_WRONG_TYPE,
                f"Expected a {expected.value} token",
            )

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise _token_error(ApiErrorCode.AUTH_TOKEN_MALFORMED, "Invalid token claims") from exc
