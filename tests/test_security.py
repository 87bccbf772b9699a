from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from security import (
    Identity,
    PasswordHasher,
    TokenExpiredError,
    TokenInvalidError,
    TokenService,
)


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture()
def tokens() -> TokenService:
    return TokenService("unit-secret")


def test_hash_is_salted_and_verifies(hasher):
    h1 = hasher.hash("pw123456")
    h2 = hasher.hash("pw123456")

    assert h1 != h2
    assert h1 != "pw123456"
    assert hasher.verify("pw123456", h1)
    assert hasher.verify("pw123456", h2)
    assert not hasher.verify("wrong", h1)


def test_dummy_verify_never_succeeds(hasher):
    assert hasher.dummy_verify() is False


def test_issue_then_verify_round_trips_identity(tokens):
    token = tokens.issue(7, "a@x.com")

    assert tokens.verify(token) == Identity(user_id=7, email="a@x.com")


def test_token_expires_after_24_hours(tokens):
    issued = datetime.now(timezone.utc) - timedelta(hours=24, minutes=1)
    token = tokens.issue(7, "a@x.com", now=issued)

    with pytest.raises(TokenExpiredError):
        tokens.verify(token)


def test_token_still_valid_just_before_expiry(tokens):
    issued = datetime.now(timezone.utc) - timedelta(hours=23, minutes=59)
    token = tokens.issue(7, "a@x.com", now=issued)

    assert tokens.verify(token).user_id == 7


def test_token_signed_with_other_secret_is_invalid(tokens):
    token = TokenService("other-secret").issue(7, "a@x.com")

    with pytest.raises(TokenInvalidError):
        tokens.verify(token)


def test_tampered_token_is_invalid(tokens):
    header, payload, signature = tokens.issue(7, "a@x.com").split(".")
    forged = jwt.encode({"userId": 1, "email": "b@x.com"}, "guess", algorithm="HS256").split(".")[1]

    with pytest.raises(TokenInvalidError):
        tokens.verify(f"{header}.{forged}.{signature}")


def test_garbage_token_is_invalid(tokens):
    with pytest.raises(TokenInvalidError):
        tokens.verify("not-a-jwt")


def test_token_without_identity_claims_is_invalid(tokens):
    token = jwt.encode({"sub": "a@x.com"}, "unit-secret", algorithm="HS256")

    with pytest.raises(TokenInvalidError):
        tokens.verify(token)


def test_empty_secret_is_rejected():
    with pytest.raises(ValueError):
        TokenService("")
