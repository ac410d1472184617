"""
RentControl Database Module
Async SQLAlchemy with SQLite (dev) / PostgreSQL (prod) support.
Backs the reference SQL repository and the database history sink.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from rentcontrol.core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# Engine and session factory (lazy initialization)
_engine: Optional[AsyncEngine] = None
_async_session_factory = None


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with pooling suited to the backend.

    Pool settings:
    - PostgreSQL: QueuePool with configurable size
    - SQLite: NullPool (SQLite doesn't support concurrent connections well)
    """
    if "sqlite" in database_url:
        pool_config = {
            "poolclass": NullPool,
            "connect_args": {"check_same_thread": False},
        }
    else:
        pool_config = {
            "poolclass": AsyncAdaptedQueuePool,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 1800,
            "pool_pre_ping": True,
        }
    return create_async_engine(database_url, echo=echo, **pool_config)


def get_engine() -> AsyncEngine:
    """Get or create the application engine from settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(settings.database_url, echo=settings.debug)
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the application session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = make_session_factory(get_engine())
    return _async_session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables.
    Call this on startup when a database backend is selected.
    """
    from rentcontrol.models import models  # noqa: F401  registers tables

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close database connections.
    Call this on shutdown.
    """
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


@asynccontextmanager
async def get_db_session(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Usage:
        async with get_db_session() as db:
            record = await db.get(LifecycleRecord, ("Case", case_id))
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
