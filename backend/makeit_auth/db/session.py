"""Async SQLAlchemy engine and session helpers.

Provides a configured async engine, the sessionmaker that services use as
their unit-of-work factory and a helper for initializing the schema.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from makeit_auth.config.config import settings
from makeit_auth.core.logging import logger


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for ``url``.

    Pool sizing only applies to server databases; SQLite (used in tests and
    local runs) manages its own connections.
    """
    if make_url(url).get_backend_name() != "sqlite":
        kwargs.setdefault("pool_size", 5)
        kwargs.setdefault("max_overflow", 10)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=settings.DB_ECHO, **kwargs)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL_ASYNC)

Base = declarative_base()


async def initialize_database(bind: AsyncEngine = engine):
    """Create the credential tables if they do not exist yet.

    Raises:
        Exception: Re-raises any exception encountered while initializing.
    """
    # Register the mapped classes on Base.metadata before create_all.
    import makeit_auth.models.auth  # noqa: F401

    logger.info("Initializing database tables")
    async with bind.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialization complete")
        except Exception:
            logger.exception("Database initialization failed")
            raise

