"""Link mutation routes – owner or superadmin only."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from zhort.auth import schemas as auth_schemas
from zhort.auth.dependencies import as_http_error, get_current_session, get_guard
from zhort.auth.errors import AuthError
from zhort.auth.gate import Action, Principal, Resource
from zhort.auth.guard import RequestGuard
from zhort.auth.models import AuthSession
from zhort.db.session import get_db
from zhort.links import schemas
from zhort.links.models import Link
from zhort.links.service import delete_link, get_link, update_link

router = APIRouter(prefix="/links", tags=["links"])

_GUARDED = {
    401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."},
    403: {"model": auth_schemas.ErrorResponse, "description": "Not the owner of this link."},
    404: {"model": auth_schemas.ErrorResponse, "description": "Link not found."},
}


async def _guarded_link(
    link_id: int,
    action: Action,
    request: Request,
    session: AuthSession | None,
    guard: RequestGuard,
    db: AsyncSession,
) -> tuple[Principal, Link]:
    principal = await guard.authenticate(session)
    link = await get_link(db, link_id)
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found")
    await guard.authorize(
        principal,
        action,
        Resource("link", str(link.id), link.user_id),
        path=request.url.path,
    )
    return principal, link


def _link_response(link: Link) -> schemas.LinkResponse:
    return schemas.LinkResponse(
        id=link.id,
        short_code=link.short_code,
        long_url=link.long_url,
        title=link.title,
        user_id=link.user_id,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


@router.patch(
    "/{link_id}",
    response_model=schemas.LinkResponse,
    summary="Update a link",
    description="Change a link's destination or title. Each change is recorded in the audit trail.",
    responses=_GUARDED,
)
async def link_update(
    link_id: int,
    body: schemas.LinkUpdateRequest,
    request: Request,
    session: AuthSession | None = Depends(get_current_session),
    guard: RequestGuard = Depends(get_guard),
    db: AsyncSession = Depends(get_db),
):
    try:
        principal, link = await _guarded_link(
            link_id, Action.LINK_UPDATE, request, session, guard, db
        )
        changes = {
            k: str(v) if k == "long_url" else v
            for k, v in body.model_dump(exclude_unset=True).items()
            if v is not None
        }
        link = await update_link(
            db,
            link,
            changes,
            actor_id=principal.user_id,
            audit=request.app.state.audit_trail,
        )
    except AuthError as exc:
        raise as_http_error(exc) from None
    return _link_response(link)


@router.delete(
    "/{link_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a link",
    description="Delete a link. A snapshot of the deleted link is recorded in the audit trail.",
    responses=_GUARDED,
)
async def link_delete(
    link_id: int,
    request: Request,
    session: AuthSession | None = Depends(get_current_session),
    guard: RequestGuard = Depends(get_guard),
    db: AsyncSession = Depends(get_db),
):
    try:
        principal, link = await _guarded_link(
            link_id, Action.LINK_DELETE, request, session, guard, db
        )
        await delete_link(
            db, link, actor_id=principal.user_id, audit=request.app.state.audit_trail
        )
    except AuthError as exc:
        raise as_http_error(exc) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
