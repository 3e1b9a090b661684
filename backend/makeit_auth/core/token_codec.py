"""Access token codec.

Access tokens are HS256 JWTs carrying the subject id, email, role,
issued-at and expiry. Verification is pure: no I/O and no shared state,
so every API node validates tokens on its own.

``verify`` returns an :class:`InvalidAccessToken` value instead of
raising for ordinary failures. Callers treat ``EXPIRED`` as "needs
refresh" and the other reasons as "reject, do not retry".
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum

import jwt
from jwt.exceptions import InvalidSignatureError, InvalidTokenError

from makeit_auth.config.config import MIN_SECRET_KEY_BYTES
from makeit_auth.models.auth import Role

ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ["sub", "email", "role", "iat", "exp", "token_type"]


class InvalidReason(StrEnum):
    EXPIRED = "expired"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"


@dataclass(frozen=True)
class InvalidAccessToken:
    """Outcome of a failed verification."""

    reason: InvalidReason

    @property
    def needs_refresh(self) -> bool:
        return self.reason is InvalidReason.EXPIRED


@dataclass(frozen=True)
class AccessClaims:
    """Claims of a verified access token."""

    subject: str
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Signs and verifies access tokens with a symmetric key."""

    def __init__(
        self, secret_key: str, ttl_seconds: int, algorithm: str = "HS256"
    ) -> None:
        if len(secret_key.encode("utf-8")) < MIN_SECRET_KEY_BYTES:
            raise ValueError(
                f"secret key must be at least {MIN_SECRET_KEY_BYTES} bytes"
            )
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._ttl = timedelta(seconds=ttl_seconds)

    @property
    def expires_in_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, user, now: datetime) -> str:
        """Create a short-lived access token for ``user``.

        Args:
            user: Object exposing ``id``, ``email`` and ``role``.
            now: The operation's single authoritative timestamp.

        Returns:
            str: Encoded JWT access token.
        """
        role = user.role.value if isinstance(user.role, Role) else str(user.role)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
            "token_type": ACCESS_TOKEN_TYPE,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(
        self, token: str, now: datetime
    ) -> AccessClaims | InvalidAccessToken:
        """Validate ``token`` against the key and ``now``.

        Expiry is judged against the supplied ``now`` rather than the wall
        clock: a token is valid while ``now < exp``.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except InvalidSignatureError:
            return InvalidAccessToken(InvalidReason.BAD_SIGNATURE)
        except InvalidTokenError:
            return InvalidAccessToken(InvalidReason.MALFORMED)

        if payload.get("token_type") != ACCESS_TOKEN_TYPE:
            return InvalidAccessToken(InvalidReason.MALFORMED)
        try:
            role = Role(payload["role"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), timezone.utc)
        except (TypeError, ValueError):
            return InvalidAccessToken(InvalidReason.MALFORMED)

        if now >= expires_at:
            return InvalidAccessToken(InvalidReason.EXPIRED)

        return AccessClaims(
            subject=str(payload["sub"]),
            email=str(payload["email"]),
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        )
