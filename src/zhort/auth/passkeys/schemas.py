"""Pydantic schemas for passkey (WebAuthn) endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints

# Shape check only: reserved and unknown domains must still get a challenge.
LoginEmail = Annotated[
    str,
    StringConstraints(strip_whitespace=True, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$"),
]

# -- Authentication --


class PasskeyLoginStartRequest(BaseModel):
    email: LoginEmail | None = Field(
        None,
        description="Account email. Omit for a discoverable-credential (username-less) login.",
    )


class PasskeyLoginStartResponse(BaseModel):
    flow_id: str = Field(..., description="Server-generated flow ID for login.")
    options: dict = Field(
        ...,
        description="PublicKeyCredentialRequestOptions payload as a JSON-safe dict.",
    )


class PasskeyLoginFinishRequest(BaseModel):
    flow_id: str = Field(..., description="Flow ID returned by login/start.")
    credential: dict = Field(
        ...,
        description="Browser PublicKeyCredential response as JSON.",
    )


class PasskeyLoginFinishResponse(BaseModel):
    user_id: str = Field(..., description="User ID that starts with the u prefix.")
    session_token: str = Field(..., description="Bearer token for the new session.")
    expires_at: datetime = Field(..., description="Session expiry timestamp in UTC.")


# -- Add credential (authenticated) --


class PasskeyAddStartResponse(BaseModel):
    flow_id: str = Field(..., description="Server-generated flow ID for add passkey.")
    options: dict = Field(
        ...,
        description="PublicKeyCredentialCreationOptions payload as a JSON-safe dict.",
    )


class PasskeyAddFinishRequest(BaseModel):
    flow_id: str = Field(..., description="Flow ID returned by add/start.")
    credential: dict = Field(
        ...,
        description="Browser PublicKeyCredential response as JSON.",
    )
    device_name: str | None = Field(
        None, description="Optional label for the passkey.", max_length=255
    )


# -- List / delete --


class PasskeyInfo(BaseModel):
    id: str = Field(..., description="Internal passkey ID that starts with the k prefix.")
    device_name: str = Field(..., description="User-facing passkey label.")
    device_type: str = Field(..., description="Either 'platform' or 'cross-platform'.")
    created_at: datetime = Field(..., description="Creation timestamp in UTC.")
    last_used_at: datetime | None = Field(None, description="Last successful use timestamp.")


class PasskeyListResponse(BaseModel):
    passkeys: list[PasskeyInfo] = Field(..., description="Passkeys for the current user.")
