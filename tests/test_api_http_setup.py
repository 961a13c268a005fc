from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Coroutine, cast

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import Response

from app.api.errors import ApiError, ApiErrorCode
from app.api.http_setup import register_exception_handlers, register_http_middleware
from tests.auth_fixtures import app_config

LOGGER = logging.getLogger(__name__)


def _request(path: str, method: str = "GET", headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


def _build_app(**config_overrides: Any) -> FastAPI:
    config = app_config(**config_overrides)
    app = FastAPI()
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, config=config, logger=LOGGER)
    return app


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _resolve_response(result: Response | Awaitable[Response]) -> Response:
    if inspect.iscoroutine(result):
        return asyncio.run(cast(Coroutine[Any, Any, Response], result))
    return cast(Response, result)


def _body(response: Response) -> dict[str, Any]:
    return cast(dict[str, Any], json.loads(bytes(response.body)))


def test_http_setup_adds_security_headers_and_request_id() -> None:
    app = _build_app()
    dispatch = _dispatch_by_name(app, "request_logging_middleware")

    request = _request("/ok", headers=[(b"x-request-id", b"req-123")])

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"


def test_http_setup_rejects_large_request_before_handler() -> None:
    app = _build_app(request_max_bytes=8)
    dispatch = _dispatch_by_name(app, "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"20")])

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    body = _body(response)
    assert response.status_code == 413
    assert body["success"] is False
    assert body["errors"][0]["code"] == "REQUEST_TOO_LARGE"


def test_http_setup_serializes_api_error_in_envelope() -> None:
    app = _build_app()
    handler = app.exception_handlers[HTTPException]
    error = ApiError(
        status_code=409,
        error_code=ApiErrorCode.DUPLICATE_EMAIL,
        message="An account with this email already exists",
        field="email",
    )

    response: Response = _resolve_response(handler(_request("/api/auth/register"), error))
    body = _body(response)

    assert response.status_code == 409
    assert body["success"] is False
    assert body["message"] == "An account with this email already exists"
    assert body["errors"] == [
        {
            "field": "email",
            "message": "An account with this email already exists",
            "code": "DUPLICATE_EMAIL",
        }
    ]
    assert body["meta"]["version"] == "1.0.0-test"
    assert body["meta"]["timestamp"].endswith("Z")
    assert "data" not in body


def test_http_setup_keeps_error_headers() -> None:
    app = _build_app()
    handler = app.exception_handlers[HTTPException]
    error = ApiError(
        status_code=429,
        error_code=ApiErrorCode.RATE_LIMITED,
        message="slow down",
        headers={"Retry-After": "60"},
    )

    response: Response = _resolve_response(handler(_request("/api/auth/login"), error))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"


def test_http_setup_hides_unexpected_exception_text_outside_development() -> None:
    app = _build_app(environment="production")
    handler = app.exception_handlers[Exception]

    response: Response = _resolve_response(handler(_request("/boom"), RuntimeError("db password")))
    body = _body(response)

    assert response.status_code == 500
    assert body["errors"][0]["code"] == "INTERNAL_SERVER_ERROR"
    assert body["message"] == "Internal server error"


def test_http_setup_shows_unexpected_exception_text_in_development() -> None:
    app = _build_app(environment="development")
    handler = app.exception_handlers[Exception]

    response: Response = _resolve_response(handler(_request("/boom"), RuntimeError("boom")))

    assert _body(response)["message"] == "boom"


def test_http_setup_maps_validation_errors_to_fields() -> None:
    app = _build_app()
    handler = app.exception_handlers[RequestValidationError]
    exc = RequestValidationError(
        [
            {
                "type": "value_error",
                "loc": ("body", "email"),
                "msg": "Value error, Invalid email format",
                "input": "nope",
            },
            {"type": "missing", "loc": ("body",), "msg": "Field required", "input": None},
        ]
    )

    response: Response = _resolve_response(handler(_request("/validation"), exc))
    body = _body(response)

    assert response.status_code == 400
    assert body["message"] == "Validation failed"
    assert body["errors"] == [
        {"field": "email", "message": "Invalid email format", "code": "VALIDATION_ERROR"},
        {"message": "Field required", "code": "VALIDATION_ERROR"},
    ]
