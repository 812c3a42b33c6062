"""Repository interfaces for the auth core and their SQLAlchemy implementations.

The core only needs a narrow capability set: lookups by id and email, inserts,
deletes, an atomic take on pending challenges and a compare-and-set on the
credential signature counter. Anything implementing these protocols (the SQL
stores below, or an in-memory fake in tests) can back the core.
"""

from __future__ import annotations

import contextlib
import functools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol, TypeVar

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zhort.auth.errors import StoreUnavailable
from zhort.auth.models import AuthSession, PasskeyCredential, PendingChallenge, User

T = TypeVar("T")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore(Protocol):
    async def get_by_id(self, user_id: str) -> User | None: ...
    async def get_by_email(self, email: str) -> User | None: ...
    async def list_all(self) -> list[User]: ...
    async def delete(self, user_id: str) -> None: ...


class CredentialStore(Protocol):
    async def get_by_id(self, key_id: str) -> PasskeyCredential | None: ...
    async def get_by_credential_id(self, credential_id: str) -> PasskeyCredential | None: ...
    async def list_for_user(self, user_id: str) -> list[PasskeyCredential]: ...
    async def insert(self, credential: PasskeyCredential) -> PasskeyCredential: ...
    async def compare_and_set_counter(
        self, key_id: str, expected: int, new: int, used_at: datetime
    ) -> bool: ...
    async def flag(self, key_id: str, at: datetime) -> None: ...
    async def delete(self, key_id: str) -> None: ...
    async def delete_for_user(self, user_id: str) -> None: ...


class ChallengeStore(Protocol):
    async def put(self, challenge: PendingChallenge) -> None: ...
    async def take(self, flow_id: str) -> PendingChallenge | None:
        """Remove and return the challenge. Concurrent callers: at most one gets it."""
        ...

    async def prune_expired(self, now: datetime) -> int: ...


class SessionStore(Protocol):
    async def insert(self, session: AuthSession) -> AuthSession: ...
    async def get(self, session_id: str) -> AuthSession | None: ...
    async def delete(self, session_id: str) -> None: ...
    async def delete_for_user(self, user_id: str) -> int: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------


def _store_op(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate driver errors into StoreUnavailable and reset the session."""

    @functools.wraps(fn)
    async def wrapper(self: _SqlStore, *args: Any, **kwargs: Any) -> T:
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            with contextlib.suppress(SQLAlchemyError):
                await self.db.rollback()
            raise StoreUnavailable(f"{type(self).__name__}.{fn.__name__} failed") from exc

    return wrapper


class _SqlStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db


class SqlUserStore(_SqlStore):
    @_store_op
    async def get_by_id(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).filter(User.id == user_id))
        return result.scalars().first()

    @_store_op
    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).filter(func.lower(User.email) == normalize_email(email))
        )
        return result.scalars().first()

    @_store_op
    async def list_all(self) -> list[User]:
        result = await self.db.execute(select(User).order_by(User.created_at))
        return list(result.scalars().all())

    @_store_op
    async def delete(self, user_id: str) -> None:
        await self.db.execute(delete(User).filter(User.id == user_id))
        await self.db.commit()


class SqlCredentialStore(_SqlStore):
    @_store_op
    async def get_by_id(self, key_id: str) -> PasskeyCredential | None:
        result = await self.db.execute(
            select(PasskeyCredential).filter(PasskeyCredential.id == key_id)
        )
        return result.scalars().first()

    @_store_op
    async def get_by_credential_id(self, credential_id: str) -> PasskeyCredential | None:
        result = await self.db.execute(
            select(PasskeyCredential).filter(PasskeyCredential.credential_id == credential_id)
        )
        return result.scalars().first()

    @_store_op
    async def list_for_user(self, user_id: str) -> list[PasskeyCredential]:
        result = await self.db.execute(
            select(PasskeyCredential)
            .filter(PasskeyCredential.user_id == user_id)
            .order_by(
                PasskeyCredential.last_used_at.is_(None),
                desc(PasskeyCredential.last_used_at),
                desc(PasskeyCredential.created_at),
            )
        )
        return list(result.scalars().all())

    @_store_op
    async def insert(self, credential: PasskeyCredential) -> PasskeyCredential:
        self.db.add(credential)
        await self.db.commit()
        await self.db.refresh(credential)
        return credential

    @_store_op
    async def compare_and_set_counter(
        self, key_id: str, expected: int, new: int, used_at: datetime
    ) -> bool:
        result = await self.db.execute(
            update(PasskeyCredential)
            .filter(PasskeyCredential.id == key_id, PasskeyCredential.sign_count == expected)
            .values(sign_count=new, last_used_at=used_at)
        )
        await self.db.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    @_store_op
    async def flag(self, key_id: str, at: datetime) -> None:
        await self.db.execute(
            update(PasskeyCredential)
            .filter(PasskeyCredential.id == key_id, PasskeyCredential.flagged_at.is_(None))
            .values(flagged_at=at)
        )
        await self.db.commit()

    @_store_op
    async def delete(self, key_id: str) -> None:
        await self.db.execute(delete(PasskeyCredential).filter(PasskeyCredential.id == key_id))
        await self.db.commit()

    @_store_op
    async def delete_for_user(self, user_id: str) -> None:
        await self.db.execute(
            delete(PasskeyCredential).filter(PasskeyCredential.user_id == user_id)
        )
        await self.db.commit()


class SqlChallengeStore(_SqlStore):
    @_store_op
    async def put(self, challenge: PendingChallenge) -> None:
        self.db.add(challenge)
        await self.db.commit()

    @_store_op
    async def take(self, flow_id: str) -> PendingChallenge | None:
        result = await self.db.execute(
            select(PendingChallenge).filter(PendingChallenge.id == flow_id)
        )
        if (flow := result.scalars().first()) is None:
            return None
        self.db.expunge(flow)
        # The DELETE is the serialization point: only the caller that removes the row wins.
        deleted = await self.db.execute(
            delete(PendingChallenge)
            .filter(PendingChallenge.id == flow_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if deleted.rowcount != 1:  # type: ignore[attr-defined]
            return None
        return flow

    @_store_op
    async def prune_expired(self, now: datetime) -> int:
        result = await self.db.execute(
            delete(PendingChallenge).filter(PendingChallenge.expires_at < now)
        )
        await self.db.commit()
        count: int = result.rowcount  # type: ignore[attr-defined]
        return count


class SqlSessionStore(_SqlStore):
    @_store_op
    async def insert(self, session: AuthSession) -> AuthSession:
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        return session

    @_store_op
    async def get(self, session_id: str) -> AuthSession | None:
        result = await self.db.execute(select(AuthSession).filter(AuthSession.id == session_id))
        return result.scalars().first()

    @_store_op
    async def delete(self, session_id: str) -> None:
        await self.db.execute(delete(AuthSession).filter(AuthSession.id == session_id))
        await self.db.commit()

    @_store_op
    async def delete_for_user(self, user_id: str) -> int:
        result = await self.db.execute(delete(AuthSession).filter(AuthSession.user_id == user_id))
        await self.db.commit()
        count: int = result.rowcount  # type: ignore[attr-defined]
        return count
