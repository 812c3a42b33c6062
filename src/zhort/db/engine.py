"""Engine factories."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from zhort.config import Settings


def sync_to_async_url(url: str) -> str:
    """Convert a sync database URL to its async equivalent."""
    if url.startswith("sqlite:"):
        return url.replace("sqlite:", "sqlite+aiosqlite:", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def async_to_sync_url(url: str) -> str:
    """Convert an async database URL back to a sync driver (used by the CLI)."""
    if url.startswith("sqlite+aiosqlite:"):
        return url.replace("sqlite+aiosqlite:", "sqlite:", 1)
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql://", 1)
    return url


def create_engine_from_url(url: str) -> Engine:
    """Create a sync SQLAlchemy engine."""
    url = async_to_sync_url(url)
    connect_args: dict = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def create_async_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    """Create a SQLAlchemy async engine from application settings."""
    if settings is None:
        settings = Settings()
    url = sync_to_async_url(settings.database_url)
    connect_args: dict = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False
    kwargs: dict = {"connect_args": connect_args}
    if "postgresql" in url or "asyncpg" in url:
        kwargs["pool_size"] = 10
        kwargs["max_overflow"] = 20
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)
