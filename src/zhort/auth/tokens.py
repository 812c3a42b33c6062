"""Session token helpers (HS256 JWTs that point at a server-side session row)."""

from __future__ import annotations

from datetime import datetime

import jwt
from pydantic import BaseModel, ValidationError

_AUDIENCE = "zhort:session"


class SessionClaims(BaseModel):
    """Typed representation of the session token payload."""

    sub: str
    sid: str
    iat: datetime
    exp: datetime


def create_session_token(
    *,
    user_id: str,
    session_id: str,
    issued_at: datetime,
    expires_at: datetime,
    signing_key: str,
    algorithm: str = "HS256",
) -> str:
    claims = {
        "sub": user_id,
        "sid": session_id,
        "aud": _AUDIENCE,
        "iat": issued_at,
        "exp": expires_at,
    }
    return jwt.encode(claims, signing_key, algorithm=algorithm)


def decode_session_token(
    token: str,
    *,
    signing_key: str,
    algorithm: str = "HS256",
) -> SessionClaims | None:
    """Decode a session token. Returns None for any invalid or expired token."""
    try:
        payload = jwt.decode(token, signing_key, algorithms=[algorithm], audience=_AUDIENCE)
    except jwt.InvalidTokenError:
        return None
    try:
        return SessionClaims(**payload)
    except ValidationError:
        return None
