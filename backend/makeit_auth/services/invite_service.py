"""Invite code management: create, list and pre-validate codes."""

import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from makeit_auth.config.config import Settings
from makeit_auth.core.clock import Clock, SystemClock
from makeit_auth.core.logging import logger
from makeit_auth.models.auth import InviteCode
from makeit_auth.services.auth_service import is_bootstrap_code, run_bounded

# No 0/O or 1/I/L, so codes survive being read aloud or retyped.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class InviteValidation:
    valid: bool
    message: str


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class InviteService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock or SystemClock()

    async def create_invite(
        self,
        user_id: str,
        expires_in_days: int | None = None,
        *,
        timeout: float | None = None,
    ) -> InviteCode:
        """Create a new invite code owned by ``user_id``.

        Args:
            user_id: Id of the authenticated creator.
            expires_in_days: Lifetime override; defaults to
                ``INVITE_CODE_EXPIRATION_DAYS``.

        Raises:
            RuntimeError: If no unused code could be generated.
        """
        return await self._run(self._create_invite(user_id, expires_in_days), timeout)

    async def list_user_invites(
        self, user_id: str, *, timeout: float | None = None
    ) -> list[InviteCode]:
        """Return the codes created by ``user_id``, newest first."""
        return await self._run(self._list_user_invites(user_id), timeout)

    async def validate_invite_code(
        self, code: str, *, timeout: float | None = None
    ) -> InviteValidation:
        """Report whether ``code`` would currently admit a registration.

        Read-only: nothing is consumed.
        """
        return await self._run(self._validate_invite_code(code), timeout)

    async def _run(self, operation, timeout: float | None):
        limit = self._settings.DB_TIMEOUT_SECONDS if timeout is None else timeout
        return await run_bounded(operation, limit)

    async def _create_invite(self, user_id, expires_in_days):
        now = self._clock.now()
        days = expires_in_days or self._settings.INVITE_CODE_EXPIRATION_DAYS

        async with self._session_factory() as db:
            code = await self._generate_unique_code(db)
            invite = InviteCode(
                code=code,
                created_by_user_id=user_id,
                used_by_user_id=None,
                used_at=None,
                expires_at=now + timedelta(days=days),
                created_at=now,
            )
            db.add(invite)
            await db.commit()

        logger.info("Created invite code id={} for user {}", invite.id, user_id)
        return invite

    async def _list_user_invites(self, user_id):
        async with self._session_factory() as db:
            result = await db.execute(
                select(InviteCode)
                .filter(InviteCode.created_by_user_id == user_id)
                .order_by(InviteCode.created_at.desc())
            )
            return list(result.scalars().unique().all())

    async def _validate_invite_code(self, code):
        code = code.strip()
        now = self._clock.now()

        if is_bootstrap_code(code, self._settings.INVITE_BOOTSTRAP_CODE):
            return InviteValidation(valid=True, message="Valid invite code")

        async with self._session_factory() as db:
            result = await db.execute(select(InviteCode).filter(InviteCode.code == code))
            invite = result.scalars().first()

        if invite is None:
            return InviteValidation(valid=False, message="Invalid invite code")
        if invite.is_expired(now):
            return InviteValidation(valid=False, message="Invite code has expired")
        if invite.is_used():
            return InviteValidation(
                valid=False, message="Invite code has already been used"
            )
        return InviteValidation(valid=True, message="Valid invite code")

    @staticmethod
    async def _generate_unique_code(db: AsyncSession) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_code()
            result = await db.execute(
                select(InviteCode.id).filter(InviteCode.code == code)
            )
            if result.first() is None:
                return code
        raise RuntimeError(
            f"Failed to generate unique invite code after {MAX_CODE_ATTEMPTS} attempts"
        )
