"""Pydantic schemas for admin endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AdminUserInfo(BaseModel):
    id: str = Field(..., description="User ID that starts with the u prefix.")
    email: str = Field(..., description="Account email, lower-cased.")
    role: str = Field(..., description="Stored role label.")
    created_at: datetime = Field(..., description="Creation timestamp in UTC.")


class AdminUserListResponse(BaseModel):
    users: list[AdminUserInfo] = Field(..., description="All registered users.")
