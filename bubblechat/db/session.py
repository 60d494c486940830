"""
db/session.py
-------------
Async SQLAlchemy engine and session factory.

Design decisions:
  - AsyncEngine with asyncpg driver for non-blocking I/O in production;
    sqlite+aiosqlite is accepted for local runs and tests.
  - pool_pre_ping=True: validates connections before checkout to handle
    stale connections after DB restarts or idle timeouts.
  - expire_on_commit=False: avoids lazy-load errors after commit in async
    context (attributes are already loaded, no implicit SELECT needed).
  - An AsyncSession must not be shared between concurrent coroutines, so
    every branch of a parallel fan-out opens its own session_scope().
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from bubblechat.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # One connection per checkout; a busy timeout lets concurrent
        # writers queue up instead of failing straight away.
        return {"poolclass": NullPool, "connect_args": {"timeout": 30}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,     # Recycle connections every hour
    }


# ── Engine ────────────────────────────────────────────────────────────────────
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,          # Log SQL in development
    **_engine_options(settings.DATABASE_URL),
)

# ── Session Factory ───────────────────────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

SessionFactory = async_sessionmaker[AsyncSession]


@asynccontextmanager
async def session_scope(
    factory: SessionFactory = AsyncSessionLocal,
) -> AsyncIterator[AsyncSession]:
    """
    Transactional scope for a single unit of work.
    Commits on success, rolls back on exceptions.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> SessionFactory:
    """FastAPI dependency returning the session factory (overridable in tests)."""
    return AsyncSessionLocal


async def get_db(
    factory: SessionFactory = Depends(get_session_factory),
) -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency that yields a database session.
    The session is committed when the request finishes,
    and rolled back on exceptions.
    """
    async with session_scope(factory) as session:
        yield session
