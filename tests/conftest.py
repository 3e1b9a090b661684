import asyncio
import inspect
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point the module-level settings at throwaway values before anything imports them.
_test_tmp_dir = tempfile.mkdtemp(prefix="makeit_auth_test_")
os.environ.setdefault(
    "DATABASE_URL_ASYNC", f"sqlite+aiosqlite:///{_test_tmp_dir}/default.db"
)
os.environ.setdefault(
    "SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production"
)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from makeit_auth.config.config import Settings  # noqa: E402
from makeit_auth.core.auth_helper import build_password_hash  # noqa: E402
from makeit_auth.core.token_codec import TokenCodec  # noqa: E402
from makeit_auth.db.session import Base, build_engine, build_sessionmaker  # noqa: E402
from makeit_auth.models.auth import Role, User  # noqa: E402
from makeit_auth.services.auth_service import AuthService  # noqa: E402
from makeit_auth.services.invite_service import InviteService  # noqa: E402
from makeit_auth.services.refresh_tokens import RefreshTokenManager  # noqa: E402

TEST_SECRET_KEY = "unit-test-signing-key-0123456789abcdef"
BOOTSTRAP_CODE = "BOOTSTRAP-2025"
START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def settings():
    return Settings(
        SECRET_KEY=TEST_SECRET_KEY,
        BCRYPT_ROUNDS=4,
        INVITE_REQUIRED=True,
        INVITE_BOOTSTRAP_CODE=BOOTSTRAP_CODE,
        DB_TIMEOUT_SECONDS=10.0,
    )


@pytest.fixture
def db_path(tmp_path):
    """File-backed SQLite database with the schema already in place."""
    path = tmp_path / "auth.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def engine(db_path):
    # NullPool: every test runs its own event loop, so no connection may be reused.
    return build_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def codec(settings):
    return TokenCodec(settings.SECRET_KEY, settings.access_token_ttl_seconds)


@pytest.fixture
def refresh_tokens(settings):
    return RefreshTokenManager(settings.refresh_token_ttl_seconds)


@pytest.fixture
def hasher(settings):
    return build_password_hash(settings.BCRYPT_ROUNDS)


@pytest.fixture
def auth_service(session_factory, codec, refresh_tokens, settings, hasher, clock):
    return AuthService(session_factory, codec, refresh_tokens, settings, hasher, clock)


@pytest.fixture
def invite_service(session_factory, settings, clock):
    return InviteService(session_factory, settings, clock)


@pytest.fixture
def make_user(session_factory, clock):
    """Return a coroutine function that inserts a user row directly."""

    async def _make_user(email="owner@example.com", enabled=True, role=Role.USER):
        async with session_factory() as db:
            user = User(
                email=email,
                password_hash="not-a-real-hash",
                display_name=email.split("@")[0],
                role=role,
                enabled=enabled,
                created_at=clock.now(),
                updated_at=clock.now(),
            )
            db.add(user)
            await db.commit()
            return user

    return _make_user
