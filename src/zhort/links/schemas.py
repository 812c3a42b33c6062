"""Pydantic schemas for link mutation endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl


class LinkUpdateRequest(BaseModel):
    long_url: HttpUrl | None = Field(None, description="New destination URL.")
    title: str | None = Field(None, description="New title.", max_length=255)


class LinkResponse(BaseModel):
    id: int = Field(..., description="Link ID.")
    short_code: str = Field(..., description="Short code used in the public URL.")
    long_url: str = Field(..., description="Destination URL.")
    title: str | None = Field(None, description="Optional title.")
    user_id: str | None = Field(None, description="Owning user, or null for anonymous links.")
    created_at: datetime = Field(..., description="Creation timestamp in UTC.")
    updated_at: datetime | None = Field(None, description="Last update timestamp in UTC.")
