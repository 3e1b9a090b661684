"""Authentication helpers: password hashing, bearer parsing and principals.

TOKEN FLOW:

1. LOGIN / REGISTER:
   - Server verifies credentials (or invite code) and returns:
     * Access Token (JWT, minutes) - sent on every API request
     * Refresh Token (opaque, days) - stored server-side, single use

2. API REQUESTS:
   - The request authenticator middleware verifies the bearer token and
     attaches a ``Principal`` to ``request.state``
   - Protected routes depend on ``get_current_principal``; a request
     without a principal gets 401

3. REFRESH:
   - Client presents the refresh token; server revokes it and issues a
     new pair in one unit of work (rotation)
   - Presenting a revoked token again is treated as reuse and rejected

4. LOGOUT:
   - Every refresh token of the user is revoked
   - Access tokens already issued stay valid until they expire
"""

from dataclasses import dataclass

from fastapi import Request
from pwdlib import PasswordHash
from pwdlib.hashers.bcrypt import BcryptHasher

from makeit_auth.config.config import settings
from makeit_auth.core.errors import AuthenticationRequired
from makeit_auth.core.token_codec import AccessClaims
from makeit_auth.models.auth import Role

BEARER_SCHEME = "bearer"
# bcrypt only looks at the first 72 bytes and refuses longer input.
MAX_PASSWORD_BYTES = 72


def build_password_hash(rounds: int = settings.BCRYPT_ROUNDS) -> PasswordHash:
    """Return a bcrypt-only pwdlib hasher with the given cost factor."""
    return PasswordHash((BcryptHasher(rounds=rounds),))


password_hash = build_password_hash()


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def verify_password(plain_password, hashed_password, hasher=password_hash):
    """Verify a plain password against a stored hash.

    Args:
        plain_password: The clear-text password provided by the user.
        hashed_password: The stored password hash to verify against.
        hasher: pwdlib hasher to use.

    Returns:
        bool: True if the password matches, False otherwise.
    """
    if password_too_long(plain_password):
        return False
    return hasher.verify(plain_password, hashed_password)


def get_password_hash(password, hasher=password_hash):
    """Hash a plain password with bcrypt."""
    return hasher.hash(password)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` value.

    The scheme is matched case-insensitively. Anything else yields None.
    """
    if not authorization:
        return None
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != BEARER_SCHEME:
        return None
    token = parts[1].strip()
    return token or None


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of one request.

    Passed explicitly to services; never stored in module or thread state.
    """

    id: str
    email: str
    role: Role

    @classmethod
    def from_claims(cls, claims: AccessClaims) -> "Principal":
        return cls(id=claims.subject, email=claims.email, role=claims.role)


def get_current_principal(request: Request) -> Principal:
    """Return the request's principal or reject with 401.

    This is the authorization layer for protected routes; the request
    authenticator only enriches requests and never rejects them.

    Raises:
        AuthenticationRequired: If no valid access token accompanied the
            request.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise AuthenticationRequired()
    return principal
