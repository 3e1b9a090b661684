import asyncio
import threading

import pytest
from sqlalchemy import delete, func, select, update
from sqlalchemy.pool import NullPool

from makeit_auth.core.auth_helper import get_password_hash, verify_password
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
from makeit_auth.core.token_codec import AccessClaims
from makeit_auth.db.session import build_engine, build_sessionmaker
from makeit_auth.models.auth import InviteCode, Role, User
from makeit_auth.services.auth_service import AuthResult, AuthService

from conftest import BOOTSTRAP_CODE

PASSWORD = "correct horse battery"


async def _register(auth_service, email="ada@example.com", code=BOOTSTRAP_CODE):
    return await auth_service.register(email, PASSWORD, "Ada", code)


async def _set_enabled(session_factory, user_id, enabled):
    async with session_factory() as db:
        await db.execute(update(User).where(User.id == user_id).values(enabled=enabled))
        await db.commit()


async def test_bootstrap_registration_consumes_no_invite(
    auth_service, session_factory, codec, clock
) -> None:
    result = await _register(auth_service, email="  Ada@Example.com ")

    assert result.token_type == "Bearer"
    assert result.expires_in_seconds == codec.expires_in_seconds
    assert result.user.email == "ada@example.com"
    assert result.user.role is Role.USER
    claims = codec.verify(result.access_token, clock.now())
    assert isinstance(claims, AccessClaims)
    assert claims.subject == result.user.id
    async with session_factory() as db:
        invites = await db.scalar(select(func.count()).select_from(InviteCode))
    assert invites == 0


async def test_registration_requires_invite(auth_service) -> None:
    with pytest.raises(InviteRequired):
        await _register(auth_service, code=None)

    with pytest.raises(InviteRequired):
        await _register(auth_service, code="   ")


async def test_registration_without_invite_when_not_required(
    session_factory, codec, refresh_tokens, settings, hasher, clock
) -> None:
    open_settings = settings.model_copy(update={"INVITE_REQUIRED": False})
    service = AuthService(session_factory, codec, refresh_tokens, open_settings, hasher, clock)

    result = await service.register("ada@example.com", PASSWORD, "Ada", None)

    assert result.user.email == "ada@example.com"


async def test_unknown_invite_is_invalid(auth_service) -> None:
    with pytest.raises(InviteInvalid):
        await _register(auth_service, code="NOPE2345")


async def test_invite_is_single_use(auth_service, invite_service, session_factory) -> None:
    owner = await _register(auth_service, email="owner@example.com")
    invite = await invite_service.create_invite(owner.user.id)

    guest = await _register(auth_service, email="guest@example.com", code=invite.code)

    async with session_factory() as db:
        stored = await db.get(InviteCode, invite.id)
    assert stored.used_by_user_id == guest.user.id
    assert stored.used_at is not None

    with pytest.raises(InviteUsed):
        await _register(auth_service, email="third@example.com", code=invite.code)


async def test_invite_stays_used_after_consumer_is_gone(
    auth_service, invite_service, session_factory
) -> None:
    owner = await _register(auth_service, email="owner@example.com")
    invite = await invite_service.create_invite(owner.user.id)
    guest = await _register(auth_service, email="guest@example.com", code=invite.code)

    # What ON DELETE SET NULL leaves behind once the guest account is removed.
    async with session_factory() as db:
        await db.execute(
            update(InviteCode)
            .where(InviteCode.id == invite.id)
            .values(used_by_user_id=None)
        )
        await db.execute(delete(User).where(User.id == guest.user.id))
        await db.commit()

    with pytest.raises(InviteUsed):
        await _register(auth_service, email="later@example.com", code=invite.code)


async def test_expired_invite_is_rejected(auth_service, invite_service, clock) -> None:
    owner = await _register(auth_service, email="owner@example.com")
    invite = await invite_service.create_invite(owner.user.id, expires_in_days=1)

    clock.advance(days=1)

    with pytest.raises(InviteExpired):
        await _register(auth_service, email="late@example.com", code=invite.code)


async def test_failed_registration_leaves_invite_unused(
    auth_service, invite_service, session_factory
) -> None:
    owner = await _register(auth_service, email="owner@example.com")
    invite = await invite_service.create_invite(owner.user.id)

    with pytest.raises(EmailTaken):
        await _register(auth_service, email="OWNER@example.com", code=invite.code)

    async with session_factory() as db:
        stored = await db.get(InviteCode, invite.id)
    assert not stored.is_used()


async def test_duplicate_email_is_taken(auth_service) -> None:
    await _register(auth_service)

    with pytest.raises(EmailTaken):
        await _register(auth_service, email="ADA@example.com")


async def test_login_issues_new_pair(auth_service, codec, clock) -> None:
    registered = await _register(auth_service)

    result = await auth_service.login("ada@example.com", PASSWORD)

    assert result.refresh_token != registered.refresh_token
    claims = codec.verify(result.access_token, clock.now())
    assert claims.subject == registered.user.id


async def test_wrong_password_and_unknown_email_look_the_same(auth_service) -> None:
    await _register(auth_service)

    with pytest.raises(InvalidCredentials) as wrong_password:
        await auth_service.login("ada@example.com", "wrong password")
    with pytest.raises(InvalidCredentials) as unknown_email:
        await auth_service.login("nobody@example.com", PASSWORD)

    assert wrong_password.value.code == unknown_email.value.code
    assert wrong_password.value.message == unknown_email.value.message
    assert wrong_password.value.status_code == unknown_email.value.status_code


async def test_disabled_user_cannot_login(auth_service, session_factory) -> None:
    registered = await _register(auth_service)
    await _set_enabled(session_factory, registered.user.id, False)

    with pytest.raises(AccountDisabled):
        await auth_service.login("ada@example.com", PASSWORD)


async def test_refresh_rotates_and_rejects_reuse(auth_service, codec, clock) -> None:
    registered = await _register(auth_service)
    clock.advance(minutes=20)

    refreshed = await auth_service.refresh(registered.refresh_token)

    assert refreshed.refresh_token != registered.refresh_token
    claims = codec.verify(refreshed.access_token, clock.now())
    assert claims.subject == registered.user.id

    with pytest.raises(InvalidToken):
        await auth_service.refresh(registered.refresh_token)

    again = await auth_service.refresh(refreshed.refresh_token)
    assert again.user.id == registered.user.id


async def test_refresh_of_unknown_or_expired_token_is_invalid(
    auth_service, clock, settings
) -> None:
    registered = await _register(auth_service)

    with pytest.raises(InvalidToken):
        await auth_service.refresh("made-up-token")

    clock.advance(seconds=settings.refresh_token_ttl_seconds)
    with pytest.raises(InvalidToken):
        await auth_service.refresh(registered.refresh_token)


async def test_refresh_for_disabled_user_rolls_back(auth_service, session_factory) -> None:
    registered = await _register(auth_service)
    await _set_enabled(session_factory, registered.user.id, False)

    with pytest.raises(AccountDisabled):
        await auth_service.refresh(registered.refresh_token)

    # The presented token was not consumed by the failed attempt.
    await _set_enabled(session_factory, registered.user.id, True)
    refreshed = await auth_service.refresh(registered.refresh_token)
    assert refreshed.user.id == registered.user.id


async def test_logout_revokes_every_refresh_token(auth_service) -> None:
    registered = await _register(auth_service)
    second = await auth_service.login("ada@example.com", PASSWORD)

    revoked = await auth_service.logout(registered.user.id)

    assert revoked == 2
    for token in (registered.refresh_token, second.refresh_token):
        with pytest.raises(InvalidToken):
            await auth_service.refresh(token)
    assert await auth_service.logout(registered.user.id) == 0


async def test_get_user(auth_service) -> None:
    registered = await _register(auth_service)

    user = await auth_service.get_user(registered.user.id)

    assert user.email == "ada@example.com"
    with pytest.raises(InvalidToken):
        await auth_service.get_user("missing-user-id")


async def test_unreachable_store_is_transient(
    tmp_path, codec, refresh_tokens, settings, hasher, clock
) -> None:
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'auth.db'}", poolclass=NullPool
    )
    service = AuthService(
        build_sessionmaker(engine), codec, refresh_tokens, settings, hasher, clock
    )

    with pytest.raises(CredentialStoreUnavailable) as login_error:
        await service.login("ada@example.com", PASSWORD)
    with pytest.raises(CredentialStoreUnavailable):
        await service.refresh("some-token")

    assert login_error.value.status_code == 503


async def test_expired_deadline_is_transient(auth_service) -> None:
    await _register(auth_service)

    with pytest.raises(CredentialStoreUnavailable) as error:
        await auth_service.login("ada@example.com", PASSWORD, timeout=1e-9)

    assert error.value.status_code == 503


async def test_overlong_password_fails_login_like_any_wrong_password(
    auth_service,
) -> None:
    await _register(auth_service)

    with pytest.raises(InvalidCredentials) as known:
        await auth_service.login("ada@example.com", "p" * 80)
    with pytest.raises(InvalidCredentials) as unknown:
        await auth_service.login("who@example.com", "p" * 80)

    assert known.value.message == unknown.value.message


def test_verify_password_rejects_overlong_input(hasher) -> None:
    stored = get_password_hash("p" * 72, hasher)

    assert verify_password("p" * 72, stored, hasher)
    assert not verify_password("p" * 80, stored, hasher)


async def test_concurrent_registrations_consume_invite_once(
    auth_service, invite_service
) -> None:
    owner = await _register(auth_service, email="owner@example.com")
    invite = await invite_service.create_invite(owner.user.id)

    results = await asyncio.gather(
        _register(auth_service, email="a@example.com", code=invite.code),
        _register(auth_service, email="b@example.com", code=invite.code),
        return_exceptions=True,
    )

    assert sorted(type(result).__name__ for result in results) == [
        AuthResult.__name__,
        InviteUsed.__name__,
    ]


class _ThreadRecordingHasher:
    def __init__(self, hasher) -> None:
        self._hasher = hasher
        self.threads = []

    def hash(self, password):
        self.threads.append(threading.get_ident())
        return self._hasher.hash(password)

    def verify(self, password, hashed):
        self.threads.append(threading.get_ident())
        return self._hasher.verify(password, hashed)


async def test_password_hashing_runs_off_the_event_loop(
    session_factory, codec, refresh_tokens, settings, hasher, clock
) -> None:
    recording = _ThreadRecordingHasher(hasher)
    service = AuthService(
        session_factory, codec, refresh_tokens, settings, recording, clock
    )

    await _register(service)
    await service.login("ada@example.com", PASSWORD)
    with pytest.raises(InvalidCredentials):
        await service.login("who@example.com", PASSWORD)

    # register, login, then the unknown-email dummy hash and its check
    assert len(recording.threads) == 4
    assert threading.get_ident() not in recording.threads
