"""Passkey (WebAuthn) API router – mounted at ``/auth/passkey``."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from zhort.auth import schemas as auth_schemas
from zhort.auth.dependencies import (
    as_http_error,
    get_authenticator,
    get_current_session,
    get_guard,
    get_principal,
    get_session_manager,
    request_context,
    require_user,
)
from zhort.auth.errors import AuthError, Unauthenticated
from zhort.auth.gate import Principal
from zhort.auth.guard import RequestGuard
from zhort.auth.models import AuthSession, User
from zhort.auth.passkeys import schemas
from zhort.auth.passkeys.service import PasskeyAuthenticator
from zhort.auth.sessions import SessionManager

router = APIRouter(prefix="/auth/passkey", tags=["passkey"])

_AUTH_FAILED = {
    401: {
        "model": auth_schemas.ErrorResponse,
        "description": "Authentication failed. The body never says which check failed.",
    }
}
_UNAVAILABLE = {
    503: {"model": auth_schemas.ErrorResponse, "description": "Credential store unavailable."}
}


# ---------------------------------------------------------------------------
# Authentication  (unauthenticated)
# ---------------------------------------------------------------------------


@router.post(
    "/login/start",
    response_model=schemas.PasskeyLoginStartResponse,
    summary="Start passkey login",
    description=(
        "Begin a passkey login ceremony and return WebAuthn authentication options. "
        "With an email the challenge is bound to that account's passkeys; without one "
        "any discoverable credential may answer."
    ),
    responses={**_AUTH_FAILED, **_UNAVAILABLE},
)
async def login_start(
    body: schemas.PasskeyLoginStartRequest,
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        flow_id, options = await authenticator.start_authentication(
            str(body.email) if body.email else None
        )
    except AuthError as exc:
        raise as_http_error(exc) from None
    return schemas.PasskeyLoginStartResponse(flow_id=flow_id, options=options)


@router.post(
    "/login/finish",
    response_model=schemas.PasskeyLoginFinishResponse,
    summary="Finish passkey login",
    description=(
        "Verify the WebAuthn assertion for the flow, advance the signature counter and "
        "open a session. The session token is returned and also set as a cookie."
    ),
    responses={**_AUTH_FAILED, **_UNAVAILABLE},
)
async def login_finish(
    body: schemas.PasskeyLoginFinishRequest,
    request: Request,
    response: Response,
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        issued = await authenticator.verify_authentication(
            body.flow_id, body.credential, **request_context(request)
        )
    except AuthError as exc:
        raise as_http_error(exc) from None

    settings = request.app.state.settings
    response.set_cookie(
        settings.session_cookie_name,
        issued.token,
        httponly=True,
        secure=settings.env == "production",
        samesite="strict",
        max_age=settings.session_ttl_minutes * 60,
        path="/",
    )
    return schemas.PasskeyLoginFinishResponse(
        user_id=issued.session.user_id,
        session_token=issued.token,
        expires_at=issued.session.expires_at,
    )


# ---------------------------------------------------------------------------
# Add credential  (authenticated)
# ---------------------------------------------------------------------------


@router.post(
    "/add/start",
    response_model=schemas.PasskeyAddStartResponse,
    summary="Start adding a passkey",
    description=(
        "Begin adding a new passkey for the authenticated user and return registration options."
    ),
    responses={
        401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."}
    },
)
async def add_start(
    user: User = require_user(),
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        flow_id, options = await authenticator.start_registration(user)
    except AuthError as exc:
        raise as_http_error(exc) from None
    return schemas.PasskeyAddStartResponse(flow_id=flow_id, options=options)


@router.post(
    "/add/finish",
    response_model=schemas.PasskeyInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Finish adding a passkey",
    description="Verify the WebAuthn attestation and attach the new passkey to the user.",
    responses={**_AUTH_FAILED, **_UNAVAILABLE},
)
async def add_finish(
    body: schemas.PasskeyAddFinishRequest,
    request: Request,
    user: User = require_user(),
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        cred = await authenticator.finish_registration(
            body.flow_id, body.credential, user, body.device_name, **request_context(request)
        )
    except AuthError as exc:
        raise as_http_error(exc) from None
    return _passkey_info(cred)


# ---------------------------------------------------------------------------
# List / Delete  (authenticated, mounted at /auth/passkeys)
# ---------------------------------------------------------------------------

passkeys_router = APIRouter(prefix="/auth/passkeys", tags=["passkey"])


def _passkey_info(cred) -> schemas.PasskeyInfo:  # type: ignore[no-untyped-def]
    return schemas.PasskeyInfo(
        id=cred.id,
        device_name=cred.device_name,
        device_type=cred.device_type,
        created_at=cred.created_at,
        last_used_at=cred.last_used_at,
    )


@passkeys_router.get(
    "",
    response_model=schemas.PasskeyListResponse,
    summary="List passkeys",
    description="List the current user's passkeys, most recently used first.",
    responses={
        401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."}
    },
)
async def passkeys_list(
    user: User = require_user(),
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        creds = await authenticator.list_credentials(user.id)
    except AuthError as exc:
        raise as_http_error(exc) from None
    return schemas.PasskeyListResponse(passkeys=[_passkey_info(c) for c in creds])


@passkeys_router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a passkey",
    description=(
        "Delete a passkey by its internal key ID. Passkeys belonging to other users are "
        "reported as not found."
    ),
    responses={
        401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."},
        404: {"model": auth_schemas.ErrorResponse, "description": "Passkey not found."},
    },
)
async def passkey_delete(
    key_id: str,
    principal: Principal = Depends(get_principal),
    guard: RequestGuard = Depends(get_guard),
    authenticator: PasskeyAuthenticator = Depends(get_authenticator),
):
    try:
        await authenticator.remove_passkey(principal, key_id, guard)
    except AuthError as exc:
        raise as_http_error(exc) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Logout  (mounted at /auth)
# ---------------------------------------------------------------------------

session_router = APIRouter(prefix="/auth", tags=["session"])


@session_router.post(
    "/logout",
    response_model=auth_schemas.MessageResponse,
    summary="Log out",
    description="Destroy the current session and clear the session cookie.",
    responses={
        401: {"model": auth_schemas.ErrorResponse, "description": "Missing or invalid session."}
    },
)
async def logout(
    request: Request,
    response: Response,
    session: AuthSession | None = Depends(get_current_session),
    sessions: SessionManager = Depends(get_session_manager),
    guard: RequestGuard = Depends(get_guard),
):
    if session is None:
        raise as_http_error(Unauthenticated("No active session"))
    try:
        await guard.authenticate(session)
        await sessions.logout(session)
    except AuthError as exc:
        raise as_http_error(exc) from None
    response.delete_cookie(request.app.state.settings.session_cookie_name, path="/")
    return auth_schemas.MessageResponse(message="Logged out")
