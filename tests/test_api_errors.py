from __future__ import annotations

from app.api.errors import ApiError, ApiErrorCode, to_error_payload


def test_to_error_payload_preserves_structured_detail() -> None:
    payload = to_error_payload(
        {"error_code": "DUPLICATE_EMAIL", "message": "Taken", "field": "email"},
        409,
    )

    assert payload == {
        "message": "Taken",
        "errors": [{"message": "Taken", "code": "DUPLICATE_EMAIL", "field": "email"}],
    }


def test_to_error_payload_normalizes_plain_string() -> None:
    payload = to_error_payload("boom", 500)

    assert payload == {
        "message": "boom",
        "errors": [{"message": "boom", "code": "HTTP_500"}],
    }


def test_api_error_carries_code_and_field() -> None:
    error = ApiError(
        status_code=409,
        error_code=ApiErrorCode.DUPLICATE_PHONE,
        message="Taken",
        field="phone",
    )

    assert error.status_code == 409
    assert error.detail == {"error_code": "DUPLICATE_PHONE", "message": "Taken", "field": "phone"}
    assert to_error_payload(error.detail, 409)["errors"][0]["field"] == "phone"
