"""User and role-binding schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1, max_length=255)
    role: Optional[str] = Field(default=None, description="Defaults to the minimal-privilege role.")


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_active: Optional[bool] = None


class UserRoleUpdate(BaseModel):
    role: str = Field(..., min_length=1, max_length=120)


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    role_id: Optional[UUID]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    limit: int
    pages: int


class ResolvedPermissionsResponse(BaseModel):
    user_id: UUID
    role: str
    is_admin: bool
    permissions: List[str]
