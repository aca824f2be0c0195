"""Secret and signed-token generation for new instances.

Passwords come straight from the operating system CSPRNG through
:mod:`secrets`; if that source is unavailable generation fails instead of
falling back to a weaker generator. Tokens are HS256 JWTs minted and checked
with PyJWT.
"""
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass

import jwt

from .errors import CredentialsError

PASSWORD_LENGTH = 40
ENCRYPTION_KEY_LENGTH = 32

TOKEN_TTL_SECONDS = 315_360_000  # ten years
TOKEN_ISSUER = "supabase"
TOKEN_AUDIENCE = "authenticated"
TOKEN_REF = "localhost"
TOKEN_SUBJECT = "1234567890"
TOKEN_ALGORITHM = "HS256"

ANON_ROLE = "anon"
SERVICE_ROLE = "service_role"


@dataclass(frozen=True, slots=True)
class Secrets:
    """Credentials generated for a single provisioning run."""

    postgres_password: str
    jwt_secret: str
    dashboard_password: str
    vault_enc_key: str
    anon_key: str
    service_role_key: str

    def __repr__(self) -> str:
        """Avoid leaking secret material through logs and tracebacks."""
        return "Secrets(<redacted>)"


def generate_password(length: int) -> str:
    """Return *length* URL-safe characters drawn from the OS random source."""
    if length < 1:
        raise ValueError("Password length must be a positive integer.")
    try:
        token = secrets.token_urlsafe(length)
    except (NotImplementedError, OSError) as exc:
        raise CredentialsError(
            f"Secure random source unavailable: {exc}",
            remediation="Ensure the operating system provides a working os.urandom().",
        ) from exc
    # token_urlsafe(n) encodes n bytes, which is always at least n characters.
    return token[:length]


def generate_encryption_key() -> str:
    """Return a 32 character key suitable for the vault's AES-256 setting."""
    return generate_password(ENCRYPTION_KEY_LENGTH)


def generate_jwt(signing_secret: str, role: str, *, issued_at: int | None = None) -> str:
    """Return an HS256 token for *role* signed with *signing_secret*."""
    if not signing_secret:
        raise CredentialsError("JWT signing secret must be a non-empty string.")
    now = int(time.time()) if issued_at is None else issued_at
    payload = {
        "aud": TOKEN_AUDIENCE,
        "exp": now + TOKEN_TTL_SECONDS,
        "iat": now,
        "iss": TOKEN_ISSUER,
        "ref": TOKEN_REF,
        "role": role,
        "sub": TOKEN_SUBJECT,
    }
    return jwt.encode(payload, signing_secret, algorithm=TOKEN_ALGORITHM)


def verify_jwt(token: str, signing_secret: str) -> dict[str, object]:
    """Validate *token* against *signing_secret* and return its payload."""
    try:
        return jwt.decode(
            token,
            signing_secret,
            algorithms=[TOKEN_ALGORITHM],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
        )
    except jwt.PyJWTError as exc:
        raise CredentialsError(f"Token failed verification: {exc}") from exc


def generate_secrets() -> Secrets:
    """Generate the complete secret set for a new instance.

    Either every value is produced and both tokens verify against the signing
    secret, or :class:`CredentialsError` is raised and nothing is returned.
    """
    postgres_password = generate_password(PASSWORD_LENGTH)
    jwt_secret = generate_password(PASSWORD_LENGTH)
    dashboard_password = generate_password(PASSWORD_LENGTH)
    vault_enc_key = generate_encryption_key()

    issued_at = int(time.time())
    anon_key = generate_jwt(jwt_secret, ANON_ROLE, issued_at=issued_at)
    service_role_key = generate_jwt(jwt_secret, SERVICE_ROLE, issued_at=issued_at)

    for role, token in ((ANON_ROLE, anon_key), (SERVICE_ROLE, service_role_key)):
        claims = verify_jwt(token, jwt_secret)
        if claims.get("role") != role:
            raise CredentialsError(f"Generated {role} token carries the wrong role claim.")

    return Secrets(
        postgres_password=postgres_password,
        jwt_secret=jwt_secret,
        dashboard_password=dashboard_password,
        vault_enc_key=vault_enc_key,
        anon_key=anon_key,
        service_role_key=service_role_key,
    )


__all__ = [
    "ANON_ROLE",
    "SERVICE_ROLE",
    "Secrets",
    "generate_encryption_key",
    "generate_jwt",
    "generate_password",
    "generate_secrets",
    "verify_jwt",
]
