"""Authentication API router."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from app.api.contracts import (
    ApiErrorResponse,
    AuthSessionResponse,
    MessageResponse,
    TokensResponse,
    UserResponse,
    success_envelope,
)
from app.api.errors import ApiError, ApiErrorCode
from app.auth.middleware import require_authenticated
from app.auth.models import (
    AuthContext,
    ChangePasswordInput,
    ForgotPasswordInput,
    LoginInput,
    LogoutInput,
    RefreshInput,
    RegisterInput,
    ResendVerificationInput,
    ResetPasswordInput,
    SessionTokens,
)
from app.auth.rate_limiter import (
    SCOPE_LOGIN,
    SCOPE_PASSWORD_RESET,
    SCOPE_REGISTER,
    EndpointRateLimiter,
)
from app.auth.service import AuthService
from app.core.config import AppConfig

REFRESH_COOKIE_NAME = "refresh_token"
REFRESH_COOKIE_PATH = "/api/auth"
RESET_REQUESTED_MESSAGE = "If this email is registered, a reset link has been sent"

AUTH_ERRORS: dict[int | str, dict[str, Any]] = {
    401: {"model": ApiErrorResponse},
    403: {"model": ApiErrorResponse},
}


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else "") or "unknown"


def create_auth_router(
    service: AuthService,
    rate_limiter: EndpointRateLimiter,
    *,
    config: AppConfig,
) -> APIRouter:
    """Build the router for register/login/refresh/logout and account recovery."""
    router = APIRouter(prefix="/api/auth", tags=["auth"])
    version = config.api_version

    def envelope(message: str, data: Any | None = None) -> dict[str, Any]:
        return success_envelope(message, version=version, data=data)

    def set_refresh_cookie(response: Response, tokens: SessionTokens) -> None:
        response.set_cookie(
            REFRESH_COOKIE_NAME,
            tokens.refresh_token,
            max_age=tokens.refresh_expires_in,
            path=REFRESH_COOKIE_PATH,
            httponly=True,
            secure=config.is_production,
            samesite="strict",
        )

    def clear_refresh_cookie(response: Response) -> None:
        response.delete_cookie(
            REFRESH_COOKIE_NAME,
            path=REFRESH_COOKIE_PATH,
            httponly=True,
            secure=config.is_production,
            samesite="strict",
        )

    def expired_refresh_cookie() -> str:
        carrier = Response()
        clear_refresh_cookie(carrier)
        return carrier.headers["set-cookie"]

    @router.post(
        "/register",
        status_code=201,
        response_model=AuthSessionResponse,
        responses={409: {"model": ApiErrorResponse}, 429: {"model": ApiErrorResponse}},
    )
    def register(req: RegisterInput, request: Request, response: Response) -> dict[str, Any]:
        """Create an account pending email verification and open a session."""
        client_ip = _client_ip(request)
        rate_limiter.assert_allowed(SCOPE_REGISTER, client_ip)
        rate_limiter.record_hit(SCOPE_REGISTER, client_ip)
        result = service.register(req)
        set_refresh_cookie(response, result.tokens)
        return envelope(
            "Registration successful. Check your email to verify your account.",
            result,
        )

    @router.post(
        "/login",
        response_model=AuthSessionResponse,
        responses={**AUTH_ERRORS, 429: {"model": ApiErrorResponse}},
    )
    def login(req: LoginInput, request: Request, response: Response) -> dict[str, Any]:
        """Authenticate by email or phone number."""
        client_ip = _client_ip(request)
        rate_limiter.assert_allowed(SCOPE_LOGIN, client_ip)
        try:
            result = service.login(req)
        except ApiError as exc:
            if exc.error_code is ApiErrorCode.AUTH_INVALID_CREDENTIALS:
                rate_limiter.record_hit(SCOPE_LOGIN, client_ip)
            raise
        set_refresh_cookie(response, result.tokens)
        return envelope("Login successful", result)

    @router.post("/refresh", response_model=TokensResponse, responses=AUTH_ERRORS)
    def refresh(
        request: Request, response: Response, req: RefreshInput | None = None
    ) -> dict[str, Any]:
        """Rotate the refresh token from the body or the HTTP-only cookie."""
        token = (req.refresh_token if req else None) or request.cookies.get(REFRESH_COOKIE_NAME)
        if not token:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
                message="Refresh token required",
            )
        try:
            tokens = service.refresh(token)
        except ApiError as exc:
            exc.headers = {**(exc.headers or {}), "set-cookie": expired_refresh_cookie()}
            raise
        set_refresh_cookie(response, tokens)
        return envelope("Token refreshed", tokens)

    @router.post("/logout", response_model=MessageResponse, responses=AUTH_ERRORS)
    def logout(
        request: Request,
        response: Response,
        req: LogoutInput | None = None,
        context: AuthContext = Depends(require_authenticated),
    ) -> dict[str, Any]:
        """End this session, or every session when ``all_devices`` is set."""
        all_devices = bool(req and req.all_devices)
        token = (req.refresh_token if req else None) or request.cookies.get(REFRESH_COOKIE_NAME)
        service.logout(context, refresh_token=token, all_devices=all_devices)
        clear_refresh_cookie(response)
        if all_devices:
            return envelope("Logged out from all devices")
        return envelope("Logout successful")

    @router.get("/verify/{token}", response_model=UserResponse, responses=AUTH_ERRORS)
    def verify_email(token: str) -> dict[str, Any]:
        user = service.verify_email(token)
        return envelope("Email verified successfully", {"user": user})

    @router.post(
        "/resend-verification",
        response_model=MessageResponse,
        responses={429: {"model": ApiErrorResponse}},
    )
    def resend_verification(req: ResendVerificationInput, request: Request) -> dict[str, Any]:
        client_ip = _client_ip(request)
        rate_limiter.assert_allowed(SCOPE_PASSWORD_RESET, client_ip)
        rate_limiter.record_hit(SCOPE_PASSWORD_RESET, client_ip)
        service.resend_verification(req.email)
        return envelope("If this account awaits verification, a new link has been sent")

    @router.post(
        "/forgot-password",
        response_model=MessageResponse,
        responses={429: {"model": ApiErrorResponse}},
    )
    def forgot_password(req: ForgotPasswordInput, request: Request) -> dict[str, Any]:
        """Request a reset link; the answer is identical for unknown emails."""
        client_ip = _client_ip(request)
        rate_limiter.assert_allowed(SCOPE_PASSWORD_RESET, client_ip)
        rate_limiter.record_hit(SCOPE_PASSWORD_RESET, client_ip)
        service.request_password_reset(req.email)
        return envelope(RESET_REQUESTED_MESSAGE)

    @router.post("/reset-password", response_model=MessageResponse, responses=AUTH_ERRORS)
    def reset_password(req: ResetPasswordInput, response: Response) -> dict[str, Any]:
        service.reset_password(req.token, req.new_password)
        clear_refresh_cookie(response)
        return envelope("Password reset successfully. You can now log in.")

    @router.get("/me", response_model=UserResponse, responses=AUTH_ERRORS)
    def me(context: AuthContext = Depends(require_authenticated)) -> dict[str, Any]:
        """Return the authenticated identity."""
        return envelope("Profile retrieved", {"user": context.identity.public_view()})

    @router.patch("/change-password", response_model=MessageResponse, responses=AUTH_ERRORS)
    def change_password(
        req: ChangePasswordInput,
        response: Response,
        context: AuthContext = Depends(require_authenticated),
    ) -> dict[str, Any]:
        service.change_password(context, req.current_password, req.new_password)
        clear_refresh_cookie(response)
        return envelope("Password changed. Please log in again.")

    return router
