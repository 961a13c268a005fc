"""HTTP middleware and exception handler wiring for FastAPI apps."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.contracts import error_envelope
from app.api.errors import ApiErrorCode, to_error_payload
from app.core.config import AppConfig
from app.core.logging import set_correlation_id


def _validation_items(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Map pydantic errors to envelope items keyed by the offending field."""
    items: list[dict[str, Any]] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = str(error.get("msg") or "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        item: dict[str, Any] = {"message": message, "code": str(ApiErrorCode.VALIDATION_ERROR)}
        if location:
            item["field"] = ".".join(location)
        items.append(item)
    return items


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach common security and observability middleware to an app."""
    version = config.api_version

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > config.security.request_max_bytes:
                return JSONResponse(
                    status_code=413,
                    content=error_envelope(
                        to_error_payload(
                            {
                                "error_code": ApiErrorCode.REQUEST_TOO_LARGE,
                                "message": (
                                    "Request size exceeds configured limit "
                                    f"({config.security.request_max_bytes} bytes)."
                                ),
                            },
                            413,
                        ),
                        version=version,
                    ),
                )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        logger.info(
            "request_completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response


def register_exception_handlers(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach API exception handlers that return the uniform envelope."""
    version = config.api_version

    @app.exception_handler(HTTPException)
    async def handle_http_exception(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
                "error_code": payload["errors"][0]["code"],
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(payload, version=version),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(
            "validation_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 400,
            },
        )
        payload = {"message": "Validation failed", "errors": _validation_items(exc)}
        return JSONResponse(status_code=400, content=error_envelope(payload, version=version))

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception(
            "unexpected_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
            },
        )
        message = "Internal server error"
        if config.is_development and str(exc):
            message = str(exc)
        payload = to_error_payload(
            {"error_code": ApiErrorCode.INTERNAL_SERVER_ERROR, "message": message}, 500
        )
        return JSONResponse(status_code=500, content=error_envelope(payload, version=version))
