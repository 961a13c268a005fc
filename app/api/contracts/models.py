"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.auth.models import AuthResult, IdentityView, SessionTokens


class ApiErrorItem(BaseModel):
    """Single error entry; ``field`` is set for input-related failures."""

    field: str | None = None
    message: str = Field(description="Human-readable error message")
    code: str = Field(description="Machine-readable error code")


class ResponseMeta(BaseModel):
    timestamp: str
    version: str


class ApiEnvelope(BaseModel):
    """Uniform envelope wrapping every API response."""

    success: bool
    message: str
    data: Any | None = None
    errors: list[ApiErrorItem] | None = None
    meta: ResponseMeta


class ApiErrorResponse(ApiEnvelope):
    """Stable error envelope for API responses."""

    success: Literal[False] = False
    errors: list[ApiErrorItem]


class UserPayload(BaseModel):
    user: IdentityView


class AuthSessionResponse(ApiEnvelope):
    """Identity plus session tokens after register/login."""

    data: AuthResult


class TokensResponse(ApiEnvelope):
    """Rotated session tokens."""

    data: SessionTokens


class UserResponse(ApiEnvelope):
    data: UserPayload


class MessageResponse(ApiEnvelope):
    """Acknowledgement without payload."""


class HealthPayload(BaseModel):
    status: Literal["ok"]
    environment: str
    storage: Literal["mongo", "json"]


class HealthResponse(ApiEnvelope):
    """Health check response payload."""

    data: HealthPayload


def response_meta(version: str) -> ResponseMeta:
    """Build the ``meta`` block with an ISO-8601 UTC timestamp."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return ResponseMeta(timestamp=timestamp.replace("+00:00", "Z"), version=version)


def success_envelope(message: str, *, version: str, data: Any | None = None) -> dict[str, Any]:
    """Serialize a successful response body."""
    envelope = ApiEnvelope(
        success=True,
        message=message,
        data=data,
        meta=response_meta(version),
    )
    return envelope.model_dump(mode="json", exclude_none=True)


def error_envelope(payload: dict[str, Any], *, version: str) -> dict[str, Any]:
    """Serialize an error body from ``to_error_payload`` output."""
    envelope = ApiErrorResponse(
        message=payload["message"],
        errors=[ApiErrorItem(**item) for item in payload["errors"]],
        meta=response_meta(version),
    )
    return envelope.model_dump(mode="json", exclude_none=True)
