"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode. The engine and session factory are built
from Settings by the app factory and kept on app.state; get_db() hands
each request its own AsyncSession and closes it afterwards.
"""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ekonsulta.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the connection pool for the configured database."""
    kwargs = {"echo": settings.debug}
    if not settings.database_url.startswith("sqlite"):
        # Connection pool: min 5, max 20 connections.
        kwargs.update(pool_size=5, max_overflow=15, pool_pre_ping=True)
    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory: each request gets its own session."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: yields a session per request, auto-closes."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
