"""Database Connection and Session Management"""

import re
import ssl

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator, Tuple

from app.config import Settings

# Base class for declarative models
Base = declarative_base()


def _normalize_url(settings: Settings) -> Tuple[str, dict]:
    """Return (url, connect_args) for the async driver."""
    database_url = settings.async_database_url

    # asyncpg takes ssl=SSLContext, not sslmode; strip sslmode from URL
    connect_args = {}
    if re.search(r"[?&]sslmode=(require|required|verify-full)", database_url, re.I):
        ssl_ctx = ssl.create_default_context()
        ssl_ctx.check_hostname = False
        ssl_ctx.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = ssl_ctx
        database_url = re.sub(r"[?&]sslmode=[^&]+", "", database_url, flags=re.I)
        database_url = re.sub(r"\?&", "?", database_url).rstrip("?")
    if "?&" in database_url:
        database_url = database_url.replace("?&", "?")
    return database_url, connect_args


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine with connection pooling."""
    database_url, connect_args = _normalize_url(settings)
    if database_url.startswith("sqlite"):
        # SQLite pools do not take the sizing arguments
        return create_async_engine(database_url, echo=settings.DEBUG)
    return create_async_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        echo=settings.DEBUG,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function to get database session.

    The session factory is the one the application was built with
    (``app.state.session_factory``).

    Yields:
        AsyncSession: Database session
    """
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables (for development only)"""
    # Register every model on Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections"""
    await engine.dispose()
