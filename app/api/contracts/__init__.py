"""Public API response contracts."""

from app.api.contracts.models import (
    ApiEnvelope,
    ApiErrorItem,
    ApiErrorResponse,
    AuthSessionResponse,
    HealthPayload,
    HealthResponse,
    MessageResponse,
    ResponseMeta,
    TokensResponse,
    UserPayload,
    UserResponse,
    error_envelope,
    success_envelope,
)

__all__ = [
    "ApiEnvelope",
    "ApiErrorItem",
    "ApiErrorResponse",
    "AuthSessionResponse",
    "HealthPayload",
    "HealthResponse",
    "MessageResponse",
    "ResponseMeta",
    "TokensResponse",
    "UserPayload",
    "UserResponse",
    "error_envelope",
    "success_envelope",
]
