"""Tests for federated ID token verification."""

from __future__ import annotations

import time

import pytest
from jose import jwt

from src.venuin.auth.federation import FederatedTokenVerifier
from src.venuin.config import Settings
from src.venuin.core.errors import InvalidCredentials, Unauthenticated

KEY = "provider-shared-secret"


def _settings(**overrides) -> Settings:
    values = {
        "FEDERATION_JWT_KEY": KEY,
        "FEDERATION_JWT_ALGORITHM": "HS256",
        "FEDERATION_AUDIENCE": "venuin-web",
        "FEDERATION_ISSUER": "https://accounts.example.com",
    }
    values.update(overrides)
    return Settings(**values)


def _token(key: str = KEY, **claims) -> str:
    payload = {
        "iss": "https://accounts.example.com",
        "aud": "venuin-web",
        "sub": "provider-user-1",
        "email": "planner@example.com",
        "email_verified": True,
        "name": "Pat Planner",
        "exp": int(time.time()) + 300,
    }
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, key, algorithm="HS256")


def test_valid_token_becomes_identity():
    identity = FederatedTokenVerifier(_settings()).verify(_token())

    assert identity.provider == "google"
    assert identity.subject == "provider-user-1"
    assert identity.email == "planner@example.com"
    assert identity.email_verified is True
    assert identity.name == "Pat Planner"


def test_unverified_email_is_reported_not_rejected():
    identity = FederatedTokenVerifier(_settings()).verify(_token(email_verified="true"))
    assert identity.email_verified is False


def test_unconfigured_federation():
    with pytest.raises(Unauthenticated):
        FederatedTokenVerifier(_settings(FEDERATION_JWT_KEY="")).verify(_token())


@pytest.mark.parametrize(
    "token",
    [
        _token(key="someone-elses-key"),
        _token(aud="another-app"),
        _token(iss="https://evil.example.com"),
        _token(exp=int(time.time()) - 60),
        "not-a-jwt",
    ],
    ids=["bad-signature", "wrong-audience", "wrong-issuer", "expired", "garbage"],
)
def test_invalid_tokens_rejected(token):
    with pytest.raises(InvalidCredentials):
        FederatedTokenVerifier(_settings()).verify(token)


def test_token_without_email_rejected():
    with pytest.raises(InvalidCredentials):
        FederatedTokenVerifier(_settings()).verify(_token(email=None))
