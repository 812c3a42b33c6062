"""Database helpers."""

from zhort.db.base import Base
from zhort.db.engine import create_async_engine_from_settings, create_engine_from_url
from zhort.db.session import get_db

__all__ = [
    "Base",
    "create_async_engine_from_settings",
    "create_engine_from_url",
    "get_db",
]
