"""
Database engine and session management.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from settlement.core.config import DatabaseConfig

from .base import Base

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def build_engine(config: DatabaseConfig) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Args:
        config: Database configuration

    Returns:
        AsyncEngine instance
    """
    kwargs = {"echo": config.echo, "pool_pre_ping": True}
    if not config.is_sqlite:
        kwargs.update(pool_size=config.pool_size, max_overflow=10, pool_recycle=3600)
    return create_async_engine(config.url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def init_db(config: DatabaseConfig) -> async_sessionmaker:
    """Initialize the process-wide engine and session factory."""
    global _engine, _session_factory

    if _engine is None:
        _engine = build_engine(config)
        _session_factory = build_session_factory(_engine)
    return _session_factory


async def create_all(engine: Optional[AsyncEngine] = None) -> None:
    """Create tables for every registered model."""
    from . import models  # noqa: F401  registers mappers

    engine = engine or _engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
