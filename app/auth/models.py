"""Pydantic models for the authentication domain."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(\+225|00225|225)?[0-9]{8,10}$")
NAME_RE = re.compile(r"^[a-zA-ZÀ-ÿ\s'-]+$")
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
AVATAR_COLORS = ["FF6B6B", "4ECDC4", "45B7D1", "96CEB4", "FFEAA7", "DDA0DD"]


class IdentityStatus(StrEnum):
    """Account lifecycle states."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"
    PENDING_VERIFICATION = "pending_verification"


class TokenPurpose(StrEnum):
    """Declared use of a signed token, checked when it is consumed."""

    ACCESS = "access"
    REFRESH = "refresh"
    VERIFICATION = "verification"
    RESET = "reset"


class ActivityAction(StrEnum):
    """Account events kept in the activity log."""

    USER_REGISTERED = "USER_REGISTERED"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """Normalize an Ivorian number to the ``+225`` international form."""
    normalized = re.sub(r"\s+", "", phone or "")
    if normalized.startswith("00225"):
        return "+225" + normalized[5:]
    if normalized.startswith("+225"):
        return normalized
    if normalized.startswith("225"):
        return "+225" + normalized[3:]
    return "+225" + normalized


def check_password_policy(password: str) -> str:
    """Validate password length and character classes."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password too short (min {PASSWORD_MIN_LENGTH} characters)")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password too long (max {PASSWORD_MAX_LENGTH} characters)")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one digit")
    return password


def default_avatar_url(first_name: str, last_name: str) -> str:
    """Build an initials avatar URL with a colour derived from the names."""
    first = first_name.strip() or "?"
    last = last_name.strip() or "?"
    initials = f"{first[0]}{last[0]}".upper()
    color = AVATAR_COLORS[(ord(first[0]) + ord(last[0])) % len(AVATAR_COLORS)]
    return (
        f"https://ui-avatars.com/api/?name={initials}"
        f"&background={color}&color=fff&size=200"
    )


class Identity(BaseModel):
    """Persisted account record."""

    identity_id: str
    email: str
    phone: str
    password_hash: str
    first_name: str
    last_name: str
    avatar_url: str = ""
    is_professional: bool = False
    company_name: str | None = None
    region: str | None = None
    commune: str | None = None
    email_verified: bool = False
    phone_verified: bool = False
    status: IdentityStatus = IdentityStatus.PENDING_VERIFICATION
    login_attempts: int = 0
    lockout_until: int | None = None
    created_at: int
    updated_at: int
    last_login_at: int | None = None
    last_seen_at: int | None = None

    def public_view(self) -> "IdentityView":
        """Return the identity without credentials or lockout bookkeeping."""
        return IdentityView.model_validate(
            self.model_dump(exclude={"password_hash", "login_attempts", "lockout_until"})
        )


class IdentityView(BaseModel):
    """Identity as exposed to API callers."""

    identity_id: str
    email: str
    phone: str
    first_name: str
    last_name: str
    avatar_url: str = ""
    is_professional: bool = False
    company_name: str | None = None
    region: str | None = None
    commune: str | None = None
    email_verified: bool = False
    phone_verified: bool = False
    status: IdentityStatus
    created_at: int
    updated_at: int
    last_login_at: int | None = None
    last_seen_at: int | None = None


class RefreshTokenRecord(BaseModel):
    """Refresh token persistence record; deleting it revokes the token."""

    token_hash: str
    jti: str
    identity_id: str
    expires_at: int
    created_at: int
    extended: bool = False


class TokenClaims(BaseModel):
    """Verified claims of a signed token."""

    sub: str
    email: str
    type: TokenPurpose
    iss: str
    aud: str
    iat: int
    exp: int
    jti: str


class SessionTokens(BaseModel):
    """Access/refresh pair handed to a client after a successful auth step."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int


class AuthResult(BaseModel):
    """Identity plus its freshly issued session tokens."""

    user: IdentityView
    tokens: SessionTokens


class TokenInfo(BaseModel):
    jti: str
    iat: int
    exp: int


class AuthContext(BaseModel):
    """Authenticated caller attached to the request state."""

    identity: Identity
    token: TokenInfo
    raw_token: str = Field(default="", repr=False)


class _InputModel(BaseModel):
    """Request payloads accept snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class RegisterInput(_InputModel):
    """Registration payload."""

    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: str = Field(max_length=254)
    phone: str
    password: str = Field(json_schema_extra={"format": "password"})
    is_professional: bool = False
    company_name: str | None = Field(default=None, max_length=100)
    region: str | None = Field(default=None, max_length=50)
    commune: str | None = Field(default=None, max_length=50)

    @field_validator("first_name", "last_name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not NAME_RE.match(value):
            raise ValueError("Name contains invalid characters")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = normalize_email(value)
        if not EMAIL_RE.match(value):
            raise ValueError("Invalid email format")
        return value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        compact = re.sub(r"\s+", "", value)
        if not PHONE_RE.match(compact):
            raise ValueError("Invalid Ivorian phone number")
        return normalize_phone(compact)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return check_password_policy(value)


class LoginInput(_InputModel):
    """Login payload; ``identifier`` is an email or a phone number."""

    identifier: str = Field(min_length=1)
    password: str = Field(min_length=1)
    remember_me: bool = False


class RefreshInput(_InputModel):
    refresh_token: str | None = None


class LogoutInput(_InputModel):
    refresh_token: str | None = None
    all_devices: bool = False


class ForgotPasswordInput(_InputModel):
    email: str = Field(max_length=254)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = normalize_email(value)
        if not EMAIL_RE.match(value):
            raise ValueError("Invalid email format")
        return value


class ResendVerificationInput(ForgotPasswordInput):
    pass


class ResetPasswordInput(_InputModel):
    token: str = Field(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return check_password_policy(value)


class ChangePasswordInput(_InputModel):
    current_password: str = Field(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return check_password_policy(value)


def identity_to_document(identity: Identity) -> dict[str, Any]:
    """Serialize identity for storage with plain-string enums."""
    return identity.model_dump(mode="json")
