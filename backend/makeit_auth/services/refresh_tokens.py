"""Refresh token creation, rotation and revocation.

Every method works inside a session owned by the caller, so a rotation and
whatever else the caller does (minting, user checks) commit or roll back
together. ``now`` is passed in so one operation never reads the clock
twice.

Rotation relies on a single conditional update,
``UPDATE refresh_tokens SET revoked = true WHERE id = ? AND revoked = false``,
as the serialization point between concurrent refreshes of the same token:
only the caller whose update affects a row may insert the successor.
"""

import secrets
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from makeit_auth.core.logging import logger
from makeit_auth.models.auth import RefreshToken

# 64 random bytes, URL-safe base64 encoded (86 characters).
TOKEN_BYTES = 64


class RotationFailure(StrEnum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    REVOKED = "revoked"


class RefreshTokenError(Exception):
    """Raised when a presented refresh token cannot be rotated."""

    def __init__(self, reason: RotationFailure) -> None:
        self.reason = reason
        super().__init__(f"refresh token rejected: {reason}")


class RefreshTokenManager:
    """Creates, rotates and revokes refresh token rows."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)

    async def create(
        self, db: AsyncSession, user_id: str, now: datetime
    ) -> RefreshToken:
        """Persist a fresh refresh token for ``user_id`` and return it."""
        record = RefreshToken(
            user_id=user_id,
            token=secrets.token_urlsafe(TOKEN_BYTES),
            expires_at=now + self._ttl,
            revoked=False,
            created_at=now,
        )
        db.add(record)
        await db.flush()
        logger.debug("Created refresh token id={} for user_id={}", record.id, user_id)
        return record

    async def rotate(
        self, db: AsyncSession, presented: str, now: datetime
    ) -> RefreshToken:
        """Revoke ``presented`` and return its successor.

        Raises:
            RefreshTokenError: ``NOT_FOUND`` for unknown tokens, ``REVOKED``
                for reused tokens or a lost rotation race, ``EXPIRED`` for
                tokens past their expiry.
        """
        result = await db.execute(
            select(RefreshToken).filter(RefreshToken.token == presented)
        )
        record = result.scalars().first()

        if record is None:
            raise RefreshTokenError(RotationFailure.NOT_FOUND)
        if record.revoked:
            logger.warning(
                "Refresh token reuse detected token_id={} user_id={}",
                record.id,
                record.user_id,
            )
            raise RefreshTokenError(RotationFailure.REVOKED)
        if record.is_expired(now):
            raise RefreshTokenError(RotationFailure.EXPIRED)

        revoked = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        if revoked.rowcount == 0:
            logger.warning(
                "Lost refresh token rotation race token_id={} user_id={}",
                record.id,
                record.user_id,
            )
            raise RefreshTokenError(RotationFailure.REVOKED)

        successor = await self.create(db, record.user_id, now)
        logger.info(
            "Rotated refresh token for user_id={} old_id={} new_id={}",
            record.user_id,
            record.id,
            successor.id,
        )
        return successor

    async def revoke_all(self, db: AsyncSession, user_id: str) -> int:
        """Revoke every active refresh token of ``user_id``.

        Idempotent: already-revoked rows are left untouched.

        Returns:
            int: Number of rows revoked by this call.
        """
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        logger.info("Revoked {} refresh tokens for user_id={}", count, user_id)
        return count
