"""Session issuance, resolution and invalidation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from zhort.auth.ids import is_session_id, new_session_id
from zhort.auth.models import AuthSession, utcnow
from zhort.auth.store import SessionStore
from zhort.auth.tokens import create_session_token, decode_session_token
from zhort.config import Settings


@dataclass(frozen=True)
class IssuedSession:
    session: AuthSession
    token: str


class SessionManager:
    def __init__(self, sessions: SessionStore, settings: Settings) -> None:
        self._sessions = sessions
        self._settings = settings

    async def issue(self, user_id: str) -> IssuedSession:
        now = utcnow()
        expires_at = now + timedelta(minutes=self._settings.session_ttl_minutes)
        session = await self._sessions.insert(
            AuthSession(
                id=new_session_id(),
                user_id=user_id,
                issued_at=now,
                expires_at=expires_at,
            )
        )
        token = create_session_token(
            user_id=user_id,
            session_id=session.id,
            issued_at=now,
            expires_at=expires_at,
            signing_key=self._settings.effective_signing_key(),
            algorithm=self._settings.session_algorithm,
        )
        return IssuedSession(session=session, token=token)

    async def resolve(self, token: str | None) -> AuthSession | None:
        """Map a presented token to a live session, or None."""
        if not token:
            return None
        claims = decode_session_token(
            token,
            signing_key=self._settings.effective_signing_key(),
            algorithm=self._settings.session_algorithm,
        )
        if claims is None or not is_session_id(claims.sid):
            return None
        session = await self._sessions.get(claims.sid)
        if session is None or session.user_id != claims.sub:
            return None
        if session.is_expired():
            await self._sessions.delete(session.id)
            return None
        return session

    async def logout(self, session: AuthSession) -> None:
        await self._sessions.delete(session.id)

    async def invalidate_user(self, user_id: str) -> int:
        return await self._sessions.delete_for_user(user_id)
