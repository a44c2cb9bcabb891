"""Async SQLAlchemy engine and session factory.

Uses psycopg3, which serves both the async service and the synchronous
Alembic migrations from one ``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_DRIVER_PREFIXES = ("postgresql+asyncpg://", "postgresql+psycopg2://", "postgresql://", "postgres://")


def normalize_database_url(url: str) -> str:
    """Rewrite any PostgreSQL URL flavour to the psycopg3 dialect."""
    for prefix in _DRIVER_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix) :]
    return url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The orchestrator writes one short row per phase change, so a small pool
    suffices:

    - **pool_size=5** / **max_overflow=5**
    - **pool_pre_ping=True**: survive PostgreSQL restarts.
    - **pool_recycle=1800**: recycle before idle-TCP reapers do.

    All defaults can be overridden via *kwargs*.
    """
    options: dict[str, object] = {
        "echo": False,
        "pool_size": 5,
        "max_overflow": 5,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }
    options.update(kwargs)
    return create_async_engine(normalize_database_url(database_url), **options)  # type: ignore[arg-type]


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` keeps ORM instances usable after commit
    without implicit lazy-load I/O.
    """
    return async_sessionmaker(engine, expire_on_commit=False)
