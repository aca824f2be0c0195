"""Tests for secret and token generation."""
from __future__ import annotations

import re
import secrets

import jwt
import pytest

from supactl.credentials import (
    ANON_ROLE,
    SERVICE_ROLE,
    Secrets,
    generate_encryption_key,
    generate_jwt,
    generate_password,
    generate_secrets,
    verify_jwt,
)
from supactl.errors import CredentialsError

URLSAFE = re.compile(r"[A-Za-z0-9_-]+")
SIGNING_SECRET = "s" * 40


@pytest.mark.parametrize("length", [1, 16, 32, 40, 64])
def test_generate_password_has_exact_length_and_urlsafe_alphabet(length: int) -> None:
    """Passwords have the requested length and only URL-safe characters."""
    password = generate_password(length)

    assert len(password) == length
    assert URLSAFE.fullmatch(password)


def test_generate_password_values_differ() -> None:
    """Two calls never return the same password."""
    assert len({generate_password(40) for _ in range(20)}) == 20


def test_generate_password_rejects_non_positive_length() -> None:
    """Zero or negative lengths are programming errors."""
    with pytest.raises(ValueError):
        generate_password(0)


def test_generate_password_fails_without_random_source(monkeypatch: pytest.MonkeyPatch) -> None:
    """An unavailable OS random source surfaces as CredentialsError."""

    def broken(_nbytes: int) -> str:
        raise NotImplementedError("no urandom")

    monkeypatch.setattr(secrets, "token_urlsafe", broken)

    with pytest.raises(CredentialsError):
        generate_password(40)


def test_generate_encryption_key_is_32_characters() -> None:
    """The vault key is exactly 32 characters."""
    assert len(generate_encryption_key()) == 32


def test_generate_jwt_structure_and_claims() -> None:
    """Tokens carry the fixed header and claim set."""
    token = generate_jwt(SIGNING_SECRET, ANON_ROLE, issued_at=1_700_000_000)

    assert "=" not in token
    assert token.count(".") == 2
    assert jwt.get_unverified_header(token) == {"alg": "HS256", "typ": "JWT"}
    payload = jwt.decode(token, options={"verify_signature": False})
    assert payload == {
        "aud": "authenticated",
        "exp": 1_700_000_000 + 315_360_000,
        "iat": 1_700_000_000,
        "iss": "supabase",
        "ref": "localhost",
        "role": "anon",
        "sub": "1234567890",
    }


def test_tokens_for_different_roles_share_header_but_differ() -> None:
    """Anon and service-role tokens differ in payload and signature only."""
    anon = generate_jwt(SIGNING_SECRET, ANON_ROLE, issued_at=1)
    service = generate_jwt(SIGNING_SECRET, SERVICE_ROLE, issued_at=1)

    anon_parts = anon.split(".")
    service_parts = service.split(".")
    assert anon_parts[0] == service_parts[0]
    assert anon_parts[1] != service_parts[1]
    assert anon_parts[2] != service_parts[2]


def test_verify_jwt_round_trip_and_rejects_wrong_secret() -> None:
    """Verification accepts the signing secret and rejects any other."""
    token = generate_jwt(SIGNING_SECRET, SERVICE_ROLE)

    assert verify_jwt(token, SIGNING_SECRET)["role"] == "service_role"
    with pytest.raises(CredentialsError):
        verify_jwt(token, "w" * 40)


def test_verify_jwt_rejects_malformed_tokens() -> None:
    """Tokens without three segments are rejected."""
    with pytest.raises(CredentialsError):
        verify_jwt("only.two", SIGNING_SECRET)


def test_verify_jwt_rejects_expired_token() -> None:
    """A token past its expiry no longer verifies."""
    token = generate_jwt(SIGNING_SECRET, ANON_ROLE, issued_at=1)

    with pytest.raises(CredentialsError):
        verify_jwt(token, SIGNING_SECRET)


def test_verify_jwt_rejects_foreign_audience() -> None:
    """Tokens minted for another audience are refused."""
    token = jwt.encode({"aud": "elsewhere", "iss": "supabase"}, SIGNING_SECRET, algorithm="HS256")

    with pytest.raises(CredentialsError):
        verify_jwt(token, SIGNING_SECRET)


def test_generate_jwt_requires_secret() -> None:
    """An empty signing secret cannot sign tokens."""
    with pytest.raises(CredentialsError):
        generate_jwt("", ANON_ROLE)


def test_generate_secrets_produces_verified_set() -> None:
    """The full set has the documented lengths and tokens verify against the secret."""
    generated = generate_secrets()

    assert isinstance(generated, Secrets)
    assert len(generated.postgres_password) == 40
    assert len(generated.jwt_secret) == 40
    assert len(generated.dashboard_password) == 40
    assert len(generated.vault_enc_key) == 32
    assert verify_jwt(generated.anon_key, generated.jwt_secret)["role"] == "anon"
    assert verify_jwt(generated.service_role_key, generated.jwt_secret)["role"] == "service_role"
    assert generated.jwt_secret not in repr(generated)


def test_generate_secrets_is_fresh_each_time() -> None:
    """Secrets are never reused between runs."""
    first = generate_secrets()
    second = generate_secrets()

    assert first.jwt_secret != second.jwt_secret
    assert first.postgres_password != second.postgres_password
