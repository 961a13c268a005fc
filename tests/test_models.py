from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.auth.models import (
    IdentityStatus,
    LoginInput,
    LogoutInput,
    RegisterInput,
    ResetPasswordInput,
    default_avatar_url,
    normalize_phone,
)
from tests.auth_fixtures import make_identity


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("0700000001", "+2250700000001"),
        ("+2250700000001", "+2250700000001"),
        ("002250700000001", "+2250700000001"),
        ("2250700000001", "+2250700000001"),
        ("07 00 00 00 01", "+2250700000001"),
    ],
)
def test_normalize_phone(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


def test_register_input_normalizes_and_accepts_camel_case() -> None:
    data = RegisterInput.model_validate(
        {
            "firstName": "Aïcha",
            "lastName": "N'Guessan-Yao",
            "email": "  Aicha@Example.CI ",
            "phone": "07 00 00 00 01",
            "password": "Secret123",
            "isProfessional": True,
            "companyName": "Boutique Aicha",
        }
    )

    assert data.email == "aicha@example.ci"
    assert data.phone == "+2250700000001"
    assert data.is_professional is True
    assert data.company_name == "Boutique Aicha"


@pytest.mark.parametrize(
    "password",
    ["Ab1", "alllower1", "ALLUPPER1", "NoDigitsHere", "A1" + "a" * 127],
)
def test_register_input_rejects_weak_passwords(password: str) -> None:
    with pytest.raises(ValidationError):
        RegisterInput(
            first_name="Awa",
            last_name="Kone",
            email="a@example.ci",
            phone="0700000001",
            password=password,
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"first_name": "A"},
        {"last_name": "K0ne"},
        {"email": "not-an-email"},
        {"phone": "+33612345678"},
        {"region": "x" * 51},
    ],
)
def test_register_input_rejects_invalid_fields(overrides: dict[str, str]) -> None:
    values = {
        "first_name": "Awa",
        "last_name": "Kone",
        "email": "a@example.ci",
        "phone": "0700000001",
        "password": "Secret123",
    }
    values.update(overrides)

    with pytest.raises(ValidationError):
        RegisterInput(**values)


def test_login_and_logout_inputs_accept_camel_case_flags() -> None:
    login = LoginInput.model_validate(
        {"identifier": "a@example.ci", "password": "x", "rememberMe": True}
    )
    logout = LogoutInput.model_validate({"allDevices": True})

    assert login.remember_me is True
    assert logout.all_devices is True
    assert logout.refresh_token is None


def test_reset_password_input_applies_policy() -> None:
    with pytest.raises(ValidationError):
        ResetPasswordInput(token="t", new_password="weak")


def test_public_view_hides_credentials_and_lockout() -> None:
    identity = make_identity(login_attempts=2, lockout_until=123)

    view = identity.public_view().model_dump()

    assert "password_hash" not in view
    assert "login_attempts" not in view
    assert "lockout_until" not in view
    assert view["status"] is IdentityStatus.ACTIVE


def test_default_avatar_url_uses_initials() -> None:
    url = default_avatar_url("awa", "kone")

    assert url.startswith("https://ui-avatars.com/api/?name=AK&background=")
    assert url == default_avatar_url("awa", "kone")
