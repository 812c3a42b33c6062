"""FastAPI dependencies for endpoint protection."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from zhort.auth.errors import (
    GENERIC_AUTH_FAILURE,
    AuthenticationFailed,
    AuthError,
    Forbidden,
    PasskeyNotFound,
    StoreUnavailable,
    Unauthenticated,
)
from zhort.auth.gate import Principal
from zhort.auth.guard import RequestGuard
from zhort.auth.models import AuthSession, User
from zhort.auth.passkeys.service import PasskeyAuthenticator
from zhort.auth.sessions import SessionManager
from zhort.auth.store import (
    SqlChallengeStore,
    SqlCredentialStore,
    SqlSessionStore,
    SqlUserStore,
)
from zhort.db.session import get_db

_bearer = HTTPBearer(auto_error=False)


def as_http_error(exc: AuthError) -> HTTPException:
    """Map a core error onto its HTTP response.

    Every authentication failure gets the same 401 body whatever step failed.
    """
    if isinstance(exc, AuthenticationFailed):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=GENERIC_AUTH_FAILURE)
    if isinstance(exc, Unauthenticated):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    if isinstance(exc, PasskeyNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Passkey not found")
    if isinstance(exc, StoreUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request rejected")


# ---------------------------------------------------------------------------
# Service wiring (per request, sharing one AsyncSession)
# ---------------------------------------------------------------------------


def get_session_manager(request: Request, db: AsyncSession = Depends(get_db)) -> SessionManager:
    return SessionManager(SqlSessionStore(db), request.app.state.settings)


def get_guard(request: Request, db: AsyncSession = Depends(get_db)) -> RequestGuard:
    return RequestGuard(request.app.state.gate, SqlUserStore(db), request.app.state.security_events)


def get_authenticator(
    request: Request,
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
) -> PasskeyAuthenticator:
    return PasskeyAuthenticator(
        users=SqlUserStore(db),
        credentials=SqlCredentialStore(db),
        challenges=SqlChallengeStore(db),
        sessions=sessions,
        events=request.app.state.security_events,
        settings=request.app.state.settings,
    )


def request_context(request: Request) -> dict[str, Any]:
    """Request metadata attached to security events."""
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "trace_id": getattr(request.state, "trace_id", None),
    }


# ---------------------------------------------------------------------------
# Session binding
# ---------------------------------------------------------------------------


async def get_current_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    sessions: SessionManager = Depends(get_session_manager),
) -> AuthSession | None:
    """Resolve the bearer token, or failing that the session cookie, to a live session."""
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(request.app.state.settings.session_cookie_name)
    try:
        return await sessions.resolve(token)
    except StoreUnavailable as exc:
        raise as_http_error(exc) from None


async def get_principal(
    session: AuthSession | None = Depends(get_current_session),
    guard: RequestGuard = Depends(get_guard),
) -> Principal:
    try:
        return await guard.authenticate(session)
    except AuthError as exc:
        raise as_http_error(exc) from None


async def _get_current_user(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        user = await SqlUserStore(db).get_by_id(principal.user_id)
    except StoreUnavailable as exc:
        raise as_http_error(exc) from None
    if user is None:
        raise as_http_error(Unauthenticated())
    return user


def require_user() -> Any:
    """Dependency that returns the current authenticated user."""
    return Depends(_get_current_user)

