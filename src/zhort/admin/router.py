"""Admin API router – every route runs through the request guard as a superadmin action."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from zhort.admin import schemas
from zhort.audit.models import AuditAction
from zhort.auth import schemas as auth_schemas
from zhort.auth.dependencies import (
    as_http_error,
    get_current_session,
    get_guard,
    get_session_manager,
)
from zhort.auth.errors import AuthError
from zhort.auth.gate import Action, Principal
from zhort.auth.guard import RequestGuard
from zhort.auth.ids import is_user_id
from zhort.auth.models import AuthSession
from zhort.auth.sessions import SessionManager
from zhort.auth.store import SqlCredentialStore, SqlUserStore
from zhort.db.session import get_db

router = APIRouter(prefix="/admin", tags=["admin"])

_ADMIN_ONLY = {
    401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."},
    403: {"model": auth_schemas.ErrorResponse, "description": "Superadmin required."},
}


@router.get(
    "/users",
    response_model=schemas.AdminUserListResponse,
    summary="List users",
    responses=_ADMIN_ONLY,
)
async def admin_users(
    request: Request,
    session: AuthSession | None = Depends(get_current_session),
    guard: RequestGuard = Depends(get_guard),
    db: AsyncSession = Depends(get_db),
):
    async def _list(principal: Principal) -> schemas.AdminUserListResponse:
        users = await SqlUserStore(db).list_all()
        return schemas.AdminUserListResponse(
            users=[
                schemas.AdminUserInfo(id=u.id, email=u.email, role=u.role, created_at=u.created_at)
                for u in users
            ]
        )

    try:
        return await guard.run(session, Action.ADMIN_ACCESS, _list, path=request.url.path)
    except AuthError as exc:
        raise as_http_error(exc) from None


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user",
    description=(
        "Delete a user together with their passkeys and sessions. "
        "An admin cannot delete their own account."
    ),
    responses={
        **_ADMIN_ONLY,
        400: {"model": auth_schemas.ErrorResponse, "description": "Cannot delete yourself."},
        404: {"model": auth_schemas.ErrorResponse, "description": "User not found."},
    },
)
async def admin_delete_user(
    user_id: str,
    request: Request,
    session: AuthSession | None = Depends(get_current_session),
    guard: RequestGuard = Depends(get_guard),
    sessions: SessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    users = SqlUserStore(db)

    async def _delete(principal: Principal) -> None:
        if user_id == principal.user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete yourself"
            )
        if not is_user_id(user_id) or (target := await users.get_by_id(user_id)) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        snapshot = {"email": target.email, "role": target.role}
        await SqlCredentialStore(db).delete_for_user(target.id)
        await sessions.invalidate_user(target.id)
        await users.delete(target.id)
        await request.app.state.audit_trail.append(
            target.id, principal.user_id, AuditAction.DELETED, snapshot
        )

    try:
        await guard.run(
            session, Action.ADMIN_DELETE_USER, _delete, target_user_id=user_id
        )
    except AuthError as exc:
        raise as_http_error(exc) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
