from __future__ import annotations

import pytest

from app.core.security import (
    TokenError,
    _b64url_encode,
    build_signed_token,
    decode_signed_token,
    hash_password,
    hash_token,
    peek_unverified_claims,
    verify_password,
)


def test_hash_password_embeds_rounds_and_verifies() -> None:
    stored = hash_password("Secret123", rounds=1_000)

    assert stored.startswith("pbkdf2_sha256$1000$")
    assert verify_password("Secret123", stored) is True
    assert verify_password("secret123", stored) is False


def test_hash_password_uses_random_salt() -> None:
    assert hash_password("Secret123", rounds=1_000) != hash_password("Secret123", rounds=1_000)


def test_verify_password_rejects_unknown_or_broken_hashes() -> None:
    assert verify_password("x", "bcrypt$12$abc$def") is False
    assert verify_password("x", "not-a-hash") is False
    assert verify_password("x", "pbkdf2_sha256$many$salt$digest") is False


def test_hash_token_is_stable_sha256_hex() -> None:
    digest = hash_token("abc")

    assert digest == hash_token("abc")
    assert len(digest) == 64
    assert digest != hash_token("abd")


def test_signed_token_round_trip() -> None:
    token = build_signed_token({"sub": "id-1", "exp": 2_000}, "secret")

    payload = decode_signed_token(token, "secret", now=1_000)

    assert payload == {"sub": "id-1", "exp": 2_000}


def test_decode_rejects_wrong_secret_as_malformed() -> None:
    token = build_signed_token({"sub": "id-1", "exp": 2_000}, "secret")

    with pytest.raises(TokenError) as exc:
        decode_signed_token(token, "other", now=1_000)

    assert exc.value.kind == TokenError.MALFORMED


def test_decode_reports_expired_kind() -> None:
    token = build_signed_token({"sub": "id-1", "exp": 2_000}, "secret")

    with pytest.raises(TokenError) as exc:
        decode_signed_token(token, "secret", now=2_000)

    assert exc.value.kind == TokenError.EXPIRED


def test_decode_treats_missing_expiry_as_malformed() -> None:
    token = build_signed_token({"sub": "id-1"}, "secret")

    with pytest.raises(TokenError) as exc:
        decode_signed_token(token, "secret", now=1_000)

    assert exc.value.kind == TokenError.MALFORMED


def test_decode_rejects_unsigned_algorithm() -> None:
    header = _b64url_encode(b'{"alg":"none","typ":"JWT"}')
    payload = _b64url_encode(b'{"sub":"id-1","exp":2000}')

    with pytest.raises(TokenError):
        decode_signed_token(f"{header}.{payload}.", "secret", now=1_000)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
def test_decode_rejects_structurally_invalid_tokens(token: str) -> None:
    with pytest.raises(TokenError):
        decode_signed_token(token, "secret", now=1_000)


def test_peek_unverified_claims_reads_payload_without_key() -> None:
    token = build_signed_token({"type": "refresh", "exp": 2_000}, "secret")

    assert peek_unverified_claims(token)["type"] == "refresh"
    with pytest.raises(TokenError):
        peek_unverified_claims("garbage")
