"""Authentication flows: register, login, refresh, logout, verification, reset."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Protocol

from app.api.errors import ApiError, ApiErrorCode
from app.auth.guard import AccountGuard
from app.auth.models import (
    ActivityAction,
    AuthContext,
    AuthResult,
    Identity,
    IdentityStatus,
    IdentityView,
    LoginInput,
    RefreshTokenRecord,
    RegisterInput,
    SessionTokens,
    TokenClaims,
    TokenPurpose,
    default_avatar_url,
    normalize_email,
    normalize_phone,
)
from app.auth.notifications import Notifier
from app.auth.repository import DuplicateIdentityError
from app.auth.tokens import TokenIssuer
from app.auth.verifier import TokenVerifier
from app.core.config import AuthConfig
from app.core.detached import DetachedTaskRunner
from app.core.security import hash_password, hash_token, verify_password

LOGGER = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Incorrect email/phone or password"


class AuthStore(Protocol):
    def get_identity(self, identity_id: str) -> Identity | None: ...

    def find_by_email_or_phone(
        self, email: str, phone: str, *, include_deleted: bool = False
    ) -> Identity | None: ...

    def create_identity(self, identity: Identity) -> Identity: ...

    def update_identity(self, identity_id: str, **fields: Any) -> Identity | None: ...

    def get_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None: ...

    def delete_refresh_token(self, token_hash: str, identity_id: str | None = None) -> bool: ...

    def delete_refresh_tokens_for_identity(self, identity_id: str) -> int: ...

    def record_activity(
        self, identity_id: str, action: ActivityAction, details: dict[str, Any] | None = None
    ) -> None: ...


def _duplicate_error(field: str) -> ApiError:
    if field == "phone":
        return ApiError(
            status_code=409,
            error_code=ApiErrorCode.DUPLICATE_PHONE,
            message="An account with this phone number already exists",
            field="phone",
        )
    return ApiError(
        status_code=409,
        error_code=ApiErrorCode.DUPLICATE_EMAIL,
        message="An account with this email already exists",
        field="email",
    )


def _invalid_credentials() -> ApiError:
    return ApiError(
        status_code=401,
        error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS,
        message=INVALID_CREDENTIALS_MESSAGE,
    )


def _status_error(identity: Identity) -> ApiError | None:
    if identity.status is IdentityStatus.SUSPENDED:
        return ApiError(
            status_code=403,
            error_code=ApiErrorCode.ACCOUNT_SUSPENDED,
            message="Your account is suspended. Contact support.",
        )
    if identity.status is IdentityStatus.DELETED:
        return ApiError(
            status_code=403,
            error_code=ApiErrorCode.ACCOUNT_DELETED,
            message="This account no longer exists",
        )
    return None


class AuthService:
    """Compose credential store, token issuer, verifier and account guard."""

    def __init__(
        self,
        *,
        store: AuthStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        guard: AccountGuard,
        notifier: Notifier,
        runner: DetachedTaskRunner,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._verifier = verifier
        self._guard = guard
        self._notifier = notifier
        self._runner = runner
        self._config = config
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def register(self, data: RegisterInput) -> AuthResult:
        """Create a pending identity, log it in and send the verification link."""
        existing = self._store.find_by_email_or_phone(data.email, data.phone)
        if existing is not None:
            raise _duplicate_error("email" if existing.email == data.email else "phone")

        now = self._now()
        identity = Identity(
            identity_id=uuid.uuid4().hex,
            email=data.email,
            phone=data.phone,
            password_hash=hash_password(data.password, self._config.password_hash_rounds),
            first_name=data.first_name,
            last_name=data.last_name,
            avatar_url=default_avatar_url(data.first_name, data.last_name),
            is_professional=data.is_professional,
            company_name=data.company_name or None,
            region=data.region or None,
            commune=data.commune or None,
            status=IdentityStatus.PENDING_VERIFICATION,
            created_at=now,
            updated_at=now,
        )
        try:
            identity = self._store.create_identity(identity)
        except DuplicateIdentityError as exc:
            raise _duplicate_error(exc.field) from exc

        tokens = self._issuer.issue_session_pair(identity)
        self._send_verification(identity)
        self._log_activity(
            identity.identity_id,
            ActivityAction.USER_REGISTERED,
            {"email": identity.email, "is_professional": identity.is_professional},
        )
        LOGGER.info(
            "identity_registered",
            extra={"identity_id": identity.identity_id, "event": f"professional={identity.is_professional}"},
        )
        return AuthResult(user=identity.public_view(), tokens=tokens)

    def login(self, data: LoginInput) -> AuthResult:
        """Authenticate by email or phone and issue a session pair."""
        identifier = data.identifier.strip()
        email = normalize_email(identifier)
        phone = "" if "@" in identifier else normalize_phone(identifier)
        identity = self._store.find_by_email_or_phone(email, phone, include_deleted=True)
        if identity is None:
            raise _invalid_credentials()

        self._guard.assert_not_locked(identity)

        if not verify_password(data.password, identity.password_hash):
            self._guard.record_failure(identity)
            LOGGER.info("login_failed", extra={"identity_id": identity.identity_id})
            raise _invalid_credentials()

        status_error = _status_error(identity)
        if status_error is not None:
            raise status_error

        identity = self._guard.reset(identity, last_login_at=self._now())
        tokens = self._issuer.issue_session_pair(identity, extended=data.remember_me)
        self._log_activity(
            identity.identity_id,
            ActivityAction.USER_LOGIN,
            {"email": identity.email, "remember_me": data.remember_me},
        )
        LOGGER.info(
            "login_succeeded",
            extra={"identity_id": identity.identity_id, "event": f"remember_me={data.remember_me}"},
        )
        return AuthResult(user=identity.public_view(), tokens=tokens)

    def refresh(self, refresh_token: str) -> SessionTokens:
        """Rotate a refresh token: the presented one can never be used again."""
        claims = self._issuer.decode(refresh_token, TokenPurpose.REFRESH)
        token_hash = hash_token(refresh_token)
        record = self._store.get_refresh_token(token_hash)
        if record is None or record.identity_id != claims.sub:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_REVOKED,
                message="Refresh token revoked",
            )
        if record.expires_at <= self._now():
            self._store.delete_refresh_token(token_hash)
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_EXPIRED,
                message="Refresh token expired",
            )
        if not self._store.delete_refresh_token(token_hash, identity_id=record.identity_id):
            # Another request rotated this token first.
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_REVOKED,
                message="Refresh token revoked",
            )

        identity = self._store.get_identity(claims.sub)
        if identity is None:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_IDENTITY_NOT_FOUND,
                message="This account no longer exists",
            )
        status_error = _status_error(identity)
        if status_error is not None:
            self._store.delete_refresh_tokens_for_identity(identity.identity_id)
            raise status_error

        tokens = self._issuer.issue_session_pair(identity, extended=record.extended)
        LOGGER.info("refresh_token_rotated", extra={"identity_id": identity.identity_id})
        return tokens

    def logout(
        self,
        context: AuthContext,
        *,
        refresh_token: str | None = None,
        all_devices: bool = False,
    ) -> int:
        """Delete the caller's refresh record(s) and revoke the access token."""
        identity_id = context.identity.identity_id
        if all_devices:
            removed = self._store.delete_refresh_tokens_for_identity(identity_id)
        elif refresh_token:
            removed = int(
                self._store.delete_refresh_token(hash_token(refresh_token), identity_id=identity_id)
            )
        else:
            removed = 0

        self._verifier.revoke_token(context.token.jti, context.token.exp)
        if all_devices:
            self._verifier.forget_identity(identity_id)
        self._log_activity(identity_id, ActivityAction.USER_LOGOUT, {"all_devices": all_devices})
        LOGGER.info(
            "logout",
            extra={"identity_id": identity_id, "event": f"all_devices={all_devices},removed={removed}"},
        )
        return removed

    def verify_email(self, token: str) -> IdentityView:
        """Mark the email verified and activate a pending identity."""
        claims = self._issuer.decode(token, TokenPurpose.VERIFICATION)
        identity = self._identity_for_claims(claims)

        fields: dict[str, Any] = {"email_verified": True}
        if identity.status is IdentityStatus.PENDING_VERIFICATION:
            fields["status"] = IdentityStatus.ACTIVE
        updated = self._store.update_identity(identity.identity_id, **fields) or identity.model_copy(
            update=fields
        )
        self._verifier.forget_identity(identity.identity_id)
        self._log_activity(identity.identity_id, ActivityAction.EMAIL_VERIFIED)
        LOGGER.info("email_verified", extra={"identity_id": identity.identity_id})
        return updated.public_view()

    def resend_verification(self, email: str) -> None:
        """Send a new verification link to a pending identity, silently otherwise."""
        identity = self._find_by_email(email)
        if identity is None or identity.email_verified:
            return
        if identity.status is not IdentityStatus.PENDING_VERIFICATION:
            return
        self._send_verification(identity)

    def request_password_reset(self, email: str) -> None:
        """Send a reset link when the email is known; never reveal whether it is."""
        identity = self._find_by_email(email)
        if identity is None:
            LOGGER.info("password_reset_unknown_email")
            return

        token = self._issuer.issue(
            identity, TokenPurpose.RESET, self._config.reset_token_ttl_seconds
        )
        self._runner.submit(
            "notify.password_reset", self._notifier.send_password_reset, identity, token
        )
        self._log_activity(identity.identity_id, ActivityAction.PASSWORD_RESET_REQUESTED)
        LOGGER.info("password_reset_requested", extra={"identity_id": identity.identity_id})

    def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password and sign the identity out everywhere."""
        claims = self._issuer.decode(token, TokenPurpose.RESET)
        if self._verifier.is_token_revoked(claims.jti):
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_REVOKED,
                message="Reset link already used",
            )
        identity = self._identity_for_claims(claims)

        self._store.update_identity(
            identity.identity_id,
            password_hash=hash_password(new_password, self._config.password_hash_rounds),
            login_attempts=0,
            lockout_until=None,
        )
        removed = self._store.delete_refresh_tokens_for_identity(identity.identity_id)
        self._verifier.revoke_token(claims.jti, claims.exp)
        self._verifier.forget_identity(identity.identity_id)
        self._log_activity(
            identity.identity_id,
            ActivityAction.PASSWORD_RESET_COMPLETED,
            {"sessions_revoked": removed},
        )
        LOGGER.info(
            "password_reset_completed",
            extra={"identity_id": identity.identity_id, "event": f"sessions_revoked={removed}"},
        )

    def change_password(
        self, context: AuthContext, current_password: str, new_password: str
    ) -> None:
        """Change the password of the authenticated caller and end all sessions."""
        identity = self._store.get_identity(context.identity.identity_id)
        if identity is None:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_IDENTITY_NOT_FOUND,
                message="This account no longer exists",
            )
        self._guard.assert_not_locked(identity)
        if not verify_password(current_password, identity.password_hash):
            self._guard.record_failure(identity)
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS,
                message="Current password is incorrect",
                field="current_password",
            )

        self._guard.reset(
            identity,
            password_hash=hash_password(new_password, self._config.password_hash_rounds),
        )
        self._store.delete_refresh_tokens_for_identity(identity.identity_id)
        self._verifier.revoke_token(context.token.jti, context.token.exp)
        self._verifier.forget_identity(identity.identity_id)
        self._log_activity(identity.identity_id, ActivityAction.PASSWORD_CHANGED)
        LOGGER.info("password_changed", extra={"identity_id": identity.identity_id})

    def _find_by_email(self, email: str) -> Identity | None:
        key = normalize_email(email)
        identity = self._store.find_by_email_or_phone(key, "")
        if identity is None or identity.email != key:
            return None
        return identity

    def _identity_for_claims(self, claims: TokenClaims) -> Identity:
        identity = self._store.get_identity(claims.sub)
        if identity is None or identity.status is IdentityStatus.DELETED:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_IDENTITY_NOT_FOUND,
                message="This account no longer exists",
            )
        if identity.email != claims.email:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_STALE,
                message="This link was issued for a previous email address",
            )
        return identity

    def _log_activity(
        self,
        identity_id: str,
        action: ActivityAction,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._runner.submit(
            f"activity.{action.lower()}", self._store.record_activity, identity_id, action, details
        )

    def _send_verification(self, identity: Identity) -> None:
        token = self._issuer.issue(
            identity, TokenPurpose.VERIFICATION, self._config.verification_token_ttl_seconds
        )
        self._runner.submit(
            "notify.verification", self._notifier.send_verification, identity, token
        )
