"""Register, login, refresh and logout workflows.

Each public operation:

- reads ``now`` once and uses it for every expiry decision it makes,
- runs in one session that is committed only when the whole workflow
  succeeded,
- is bounded by a timeout; a timeout or an unreachable store surfaces as
  :class:`CredentialStoreUnavailable` (transient), never as an invalid
  token or invalid credentials.
"""

import asyncio
import secrets
from dataclasses import dataclass

from pwdlib import PasswordHash
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.concurrency import run_in_threadpool

from makeit_auth.config.config import Settings
from makeit_auth.core.auth_helper import get_password_hash, verify_password
from makeit_auth.core.clock import Clock, SystemClock
from makeit_auth.core.errors import (
    AccountDisabled,
    CredentialStoreUnavailable,
    EmailTaken,
    InvalidCredentials,
    InvalidToken,
    InviteExpired,
    InviteInvalid,
    InviteRequired,
    InviteUsed,
)
from makeit_auth.core.logging import logger
from makeit_auth.core.token_codec import TokenCodec
from makeit_auth.models.auth import InviteCode, Role, User
from makeit_auth.services.refresh_tokens import (
    RefreshTokenError,
    RefreshTokenManager,
)

TOKEN_TYPE = "Bearer"


@dataclass(frozen=True)
class AuthResult:
    """Token pair plus the user they were minted for."""

    access_token: str
    refresh_token: str
    token_type: str
    expires_in_seconds: int
    user: User


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def run_bounded(operation, limit: float):
    """Await a credential store ``operation`` for at most ``limit`` seconds.

    Raises:
        CredentialStoreUnavailable: On timeout or when the store cannot be
            reached.
    """
    try:
        return await asyncio.wait_for(operation, timeout=limit)
    except asyncio.TimeoutError as exc:
        logger.error("Credential store operation timed out after {}s", limit)
        raise CredentialStoreUnavailable() from exc
    except (OperationalError, InterfaceError) as exc:
        logger.error("Credential store unavailable: {}", exc.__class__.__name__)
        raise CredentialStoreUnavailable() from exc


def is_bootstrap_code(code: str, bootstrap_code: str) -> bool:
    """True if ``code`` matches the configured, non-empty bootstrap code."""
    if not bootstrap_code:
        return False
    return secrets.compare_digest(code.encode("utf-8"), bootstrap_code.encode("utf-8"))


class AuthService:
    """Composes the token codec and refresh token manager into workflows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        codec: TokenCodec,
        refresh_tokens: RefreshTokenManager,
        settings: Settings,
        hasher: PasswordHash,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._codec = codec
        self._refresh_tokens = refresh_tokens
        self._settings = settings
        self._hasher = hasher
        self._clock = clock or SystemClock()
        self._dummy_hash: str | None = None

    async def register(
        self,
        email: str,
        password: str,
        display_name: str,
        invite_code: str | None,
        *,
        timeout: float | None = None,
    ) -> AuthResult:
        """Create an account, consuming an invite code when required.

        Raises:
            EmailTaken: If the email is already registered.
            InviteRequired: If invites are required and none was given.
            InviteInvalid: If the code does not exist.
            InviteExpired: If the code is past its expiry.
            InviteUsed: If the code was already consumed.
        """
        return await self._run(
            self._register(email, password, display_name, invite_code), timeout
        )

    async def login(
        self, email: str, password: str, *, timeout: float | None = None
    ) -> AuthResult:
        """Authenticate with email and password.

        Unknown email and wrong password raise the same
        :class:`InvalidCredentials` so callers cannot tell them apart.
        """
        return await self._run(self._login(email, password), timeout)

    async def refresh(
        self, presented: str, *, timeout: float | None = None
    ) -> AuthResult:
        """Rotate ``presented`` and mint a new access token.

        Raises:
            InvalidToken: If the token is unknown, expired, revoked or lost
                a concurrent rotation.
            AccountDisabled: If the owner was disabled; the rotation is
                rolled back.
        """
        return await self._run(self._refresh(presented), timeout)

    async def logout(self, user_id: str, *, timeout: float | None = None) -> int:
        """Revoke all refresh tokens of ``user_id``; always succeeds."""
        return await self._run(self._logout(user_id), timeout)

    async def get_user(self, user_id: str, *, timeout: float | None = None) -> User:
        """Load the user behind an authenticated principal."""
        return await self._run(self._get_user(user_id), timeout)

    async def _run(self, operation, timeout: float | None):
        limit = self._settings.DB_TIMEOUT_SECONDS if timeout is None else timeout
        return await run_bounded(operation, limit)

    async def _register(self, email, password, display_name, invite_code):
        now = self._clock.now()
        email = normalize_email(email)
        code = (invite_code or "").strip()

        logger.info("Processing registration for email={}", email)

        async with self._session_factory() as db:
            if await self._find_user_by_email(db, email) is not None:
                logger.warning("Registration failed: email already exists {}", email)
                raise EmailTaken()

            invite = None
            if self._settings.INVITE_REQUIRED:
                if not code:
                    logger.warning("Registration failed: invite code missing")
                    raise InviteRequired()
                invite = await self._validate_invite(db, code, now)
            else:
                logger.info("Invite code not required, skipping validation")

            hashed = await run_in_threadpool(get_password_hash, password, self._hasher)
            user = User(
                email=email,
                password_hash=hashed,
                display_name=display_name.strip(),
                role=Role.USER,
                enabled=True,
                created_at=now,
                updated_at=now,
            )
            db.add(user)
            try:
                await db.flush()
            except IntegrityError as exc:
                logger.warning("Registration lost email race for {}", email)
                raise EmailTaken() from exc

            if invite is not None:
                consumed = await db.execute(
                    update(InviteCode)
                    .where(
                        InviteCode.id == invite.id,
                        InviteCode.used_at.is_(None),
                        InviteCode.used_by_user_id.is_(None),
                    )
                    .values(used_by_user_id=user.id, used_at=now)
                    .execution_options(synchronize_session=False)
                )
                if consumed.rowcount == 0:
                    logger.warning("Registration lost invite race code_id={}", invite.id)
                    raise InviteUsed()
                logger.info("Invite code id={} used by user {}", invite.id, user.id)

            result = await self._issue(db, user, now)
            try:
                await db.commit()
            except IntegrityError as exc:
                raise EmailTaken() from exc

        logger.info("Created new user id={}", user.id)
        return result

    async def _login(self, email, password):
        now = self._clock.now()
        email = normalize_email(email)

        async with self._session_factory() as db:
            user = await self._find_user_by_email(db, email)
            if user is None:
                # Spend the same hashing time as a real check.
                await self._verify_password(password, await self._get_dummy_hash())
                logger.warning("Login failed: user not found {}", email)
                raise InvalidCredentials()
            if not await self._verify_password(password, user.password_hash):
                logger.warning("Login failed: invalid password for user {}", user.id)
                raise InvalidCredentials()
            if not user.enabled:
                logger.warning("Login failed: account disabled for user {}", user.id)
                raise AccountDisabled()

            result = await self._issue(db, user, now)
            await db.commit()

        logger.info("User {} logged in", user.id)
        return result

    async def _refresh(self, presented):
        now = self._clock.now()

        async with self._session_factory() as db:
            try:
                successor = await self._refresh_tokens.rotate(db, presented, now)
            except RefreshTokenError as exc:
                logger.warning("Token refresh failed: {}", exc.reason)
                raise InvalidToken("Invalid refresh token") from exc

            user = await db.get(User, successor.user_id)
            if user is None:
                logger.warning("Token refresh failed: owner missing")
                raise InvalidToken("Invalid refresh token")
            if not user.enabled:
                logger.warning("Token refresh failed: user {} is disabled", user.id)
                raise AccountDisabled()

            result = AuthResult(
                access_token=self._codec.issue(user, now),
                refresh_token=successor.token,
                token_type=TOKEN_TYPE,
                expires_in_seconds=self._codec.expires_in_seconds,
                user=user,
            )
            await db.commit()

        logger.info("Token refreshed for user {}", user.id)
        return result

    async def _logout(self, user_id):
        async with self._session_factory() as db:
            count = await self._refresh_tokens.revoke_all(db, user_id)
            await db.commit()
        logger.info("Logged out user {} ({} refresh tokens revoked)", user_id, count)
        return count

    async def _get_user(self, user_id):
        async with self._session_factory() as db:
            user = await db.get(User, user_id)
        if user is None:
            raise InvalidToken("User not found")
        return user

    async def _issue(self, db: AsyncSession, user: User, now) -> AuthResult:
        refresh = await self._refresh_tokens.create(db, user.id, now)
        return AuthResult(
            access_token=self._codec.issue(user, now),
            refresh_token=refresh.token,
            token_type=TOKEN_TYPE,
            expires_in_seconds=self._codec.expires_in_seconds,
            user=user,
        )

    async def _validate_invite(self, db: AsyncSession, code: str, now):
        """Return the invite row for ``code``; None on the bootstrap path."""
        if is_bootstrap_code(code, self._settings.INVITE_BOOTSTRAP_CODE):
            logger.info("Bootstrap invite code used for registration")
            return None

        result = await db.execute(select(InviteCode).filter(InviteCode.code == code))
        invite = result.scalars().first()
        if invite is None:
            logger.warning("Registration failed: unknown invite code")
            raise InviteInvalid()
        if invite.is_expired(now):
            logger.warning("Registration failed: invite code id={} expired", invite.id)
            raise InviteExpired()
        if invite.is_used():
            logger.warning("Registration failed: invite code id={} used", invite.id)
            raise InviteUsed()
        return invite

    @staticmethod
    async def _find_user_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).filter(User.email == email))
        return result.scalars().first()

    async def _verify_password(self, password: str, hashed: str) -> bool:
        # bcrypt is CPU bound; keep it off the event loop.
        return await run_in_threadpool(verify_password, password, hashed, self._hasher)

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await run_in_threadpool(
                get_password_hash, secrets.token_urlsafe(16), self._hasher
            )
        return self._dummy_hash
