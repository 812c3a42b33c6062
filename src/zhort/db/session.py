"""Session dependency for FastAPI."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` from the factory stored on ``app.state``."""
    async with request.app.state.async_session_factory() as db:
        yield db
