"""HTTP middleware and dependencies that attach the authenticated caller."""

from __future__ import annotations

import logging
from typing import Callable, Collection

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.api.contracts import error_envelope
from app.api.errors import ApiError, ApiErrorCode, to_error_payload
from app.auth.models import AuthContext
from app.auth.verifier import TokenVerifier

LOGGER = logging.getLogger(__name__)

PROTECTED_PATHS = frozenset(
    {
        "/api/auth/logout",
        "/api/auth/me",
        "/api/auth/change-password",
    }
)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def create_auth_middleware(
    verifier: TokenVerifier,
    *,
    version: str,
    protected_paths: Collection[str] = PROTECTED_PATHS,
) -> Callable:
    """Create middleware resolving bearer tokens into ``request.state.auth``.

    Protected paths fail closed with the verifier's error. Every other path
    gets optional authentication: a bad or missing token leaves the caller
    anonymous.
    """

    async def auth_middleware(request: Request, call_next: Callable):
        request.state.auth = None
        path = request.url.path
        token = extract_bearer_token(request.headers.get("authorization"))
        required = path in protected_paths

        if not required and not token:
            return await call_next(request)

        try:
            request.state.auth = await run_in_threadpool(verifier.authenticate, token)
        except HTTPException as exc:
            if not required:
                LOGGER.debug("optional_auth_ignored", extra={"path": path})
                return await call_next(request)
            LOGGER.info(
                "auth_rejected",
                extra={
                    "path": path,
                    "status_code": exc.status_code,
                    "error_code": getattr(exc, "error_code", ""),
                },
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=error_envelope(to_error_payload(exc.detail, exc.status_code), version=version),
                headers=exc.headers,
            )

        return await call_next(request)

    return auth_middleware


def require_authenticated(request: Request) -> AuthContext:
    """Route dependency returning the caller resolved by the middleware."""
    context = getattr(request.state, "auth", None)
    if context is None:
        raise ApiError(
            status_code=401,
            error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
            message="Authentication required",
        )
    return context


def require_email_verified(request: Request) -> AuthContext:
    context = require_authenticated(request)
    if not context.identity.email_verified:
        raise ApiError(
            status_code=403,
            error_code=ApiErrorCode.EMAIL_NOT_VERIFIED,
            message="Please verify your email address first",
        )
    return context


def require_phone_verified(request: Request) -> AuthContext:
    context = require_authenticated(request)
    if not context.identity.phone_verified:
        raise ApiError(
            status_code=403,
            error_code=ApiErrorCode.PHONE_NOT_VERIFIED,
            message="Please verify your phone number first",
        )
    return context


def require_full_verification(request: Request) -> AuthContext:
    """Route dependency for actions that need both email and phone verified."""
    require_email_verified(request)
    return require_phone_verified(request)


def require_professional(request: Request) -> AuthContext:
    context = require_authenticated(request)
    if not context.identity.is_professional:
        raise ApiError(
            status_code=403,
            error_code=ApiErrorCode.PROFESSIONAL_REQUIRED,
            message="This feature is reserved for professional accounts",
        )
    return context


def optional_auth(request: Request) -> AuthContext | None:
    """Route dependency for endpoints that serve anonymous callers too."""
    return getattr(request.state, "auth", None)
