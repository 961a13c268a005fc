from __future__ import annotations

import pytest

from app.api.errors import ApiError, ApiErrorCode
from app.auth.models import IdentityStatus, TokenPurpose
from tests.auth_fixtures import AuthHarness, build_harness, make_identity


def _harness_with_identity(**overrides) -> tuple[AuthHarness, str]:
    harness = build_harness()
    identity = make_identity(**overrides)
    harness.store.create_identity(identity)
    token = harness.issuer.issue(identity, TokenPurpose.ACCESS, 900)
    return harness, token


def test_authenticate_returns_context_and_records_last_seen() -> None:
    harness, token = _harness_with_identity()

    context = harness.verifier.authenticate(token)

    assert context.identity.identity_id == "id-1"
    assert context.token.exp == int(harness.clock.now) + 900
    assert context.raw_token == token
    assert harness.store.seen == [("id-1", int(harness.clock.now))]
    assert harness.runner.submitted == ["identity.touch_last_seen"]


def test_authenticate_without_token_is_missing_token() -> None:
    harness = build_harness()

    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate("")

    assert exc.value.status_code == 401
    assert exc.value.error_code is ApiErrorCode.AUTH_MISSING_TOKEN


def test_authenticate_uses_cache_within_window() -> None:
    harness, token = _harness_with_identity()

    harness.verifier.authenticate(token)
    harness.verifier.authenticate(token)
    assert harness.store.lookups == 1

    harness.clock.advance(301)
    harness.verifier.authenticate(token)
    assert harness.store.lookups == 2


def test_status_change_is_seen_after_cache_window() -> None:
    harness, token = _harness_with_identity()
    harness.verifier.authenticate(token)
    harness.store.update_identity("id-1", status=IdentityStatus.SUSPENDED)

    harness.verifier.authenticate(token)
    harness.clock.advance(301)
    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate(token)

    assert exc.value.status_code == 403
    assert exc.value.error_code is ApiErrorCode.ACCOUNT_SUSPENDED


def test_forget_identity_drops_cached_snapshot() -> None:
    harness, token = _harness_with_identity()
    harness.verifier.authenticate(token)
    harness.store.update_identity("id-1", status=IdentityStatus.SUSPENDED)

    harness.verifier.forget_identity("id-1")

    with pytest.raises(ApiError):
        harness.verifier.authenticate(token)


def test_suspended_identity_is_rejected_without_revocation() -> None:
    harness, token = _harness_with_identity(status=IdentityStatus.SUSPENDED)

    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate(token)

    claims = harness.issuer.decode(token, TokenPurpose.ACCESS)
    assert exc.value.status_code == 403
    assert harness.revocations.is_revoked(claims.jti) is False


def test_deleted_identity_is_rejected_and_token_revoked() -> None:
    harness, token = _harness_with_identity(status=IdentityStatus.DELETED)

    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate(token)

    claims = harness.issuer.decode(token, TokenPurpose.ACCESS)
    assert exc.value.status_code == 403
    assert exc.value.error_code is ApiErrorCode.ACCOUNT_DELETED
    assert harness.revocations.is_revoked(claims.jti) is True


def test_unknown_identity_revokes_token() -> None:
    harness = build_harness()
    token = harness.issuer.issue(make_identity(identity_id="ghost"), TokenPurpose.ACCESS, 900)

    with pytest.raises(ApiError) as first:
        harness.verifier.authenticate(token)
    with pytest.raises(ApiError) as second:
        harness.verifier.authenticate(token)

    assert first.value.error_code is ApiErrorCode.AUTH_IDENTITY_NOT_FOUND
    assert second.value.error_code is ApiErrorCode.AUTH_TOKEN_REVOKED


def test_email_change_makes_token_stale() -> None:
    harness, token = _harness_with_identity()
    harness.store.update_identity("id-1", email="new@example.ci")

    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate(token)

    claims = harness.issuer.decode(token, TokenPurpose.ACCESS)
    assert exc.value.status_code == 401
    assert exc.value.error_code is ApiErrorCode.AUTH_TOKEN_STALE
    assert harness.revocations.is_revoked(claims.jti) is True


def test_refresh_token_is_not_accepted_as_access_token() -> None:
    harness = build_harness()
    identity = make_identity()
    harness.store.create_identity(identity)
    tokens = harness.issuer.issue_session_pair(identity)

    with pytest.raises(ApiError) as exc:
        harness.verifier.authenticate(tokens.refresh_token)

    assert exc.value.error_code is ApiErrorCode.AUTH_TOKEN_WRONG_TYPE


def test_last_seen_failure_does_not_fail_authentication() -> None:
    harness, token = _harness_with_identity()

    def broken(identity_id: str, seen_at: int) -> None:
        raise RuntimeError("store down")

    harness.store.touch_last_seen = broken  # type: ignore[method-assign]

    context = harness.verifier.authenticate(token)

    assert context.identity.identity_id == "id-1"
    assert len(harness.runner.errors) == 1
