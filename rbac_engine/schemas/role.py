"""Role schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rbac_engine.models.role import ROLE_NAME_PATTERN


class RoleSpec(BaseModel):
    """Full desired state of a role, as declared or as merged from an admin edit."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., pattern=ROLE_NAME_PATTERN, max_length=120)
    display_name: Optional[str] = Field(default=None, alias="displayName", max_length=255)
    description: str = Field(default="", max_length=512)
    permissions: List[str] = Field(default_factory=list)
    is_system: bool = Field(default=False, alias="isSystem")
    priority: int = Field(default=100, ge=0)
    active: Optional[bool] = None

    @model_validator(mode="after")
    def default_display_name(self) -> "RoleSpec":
        if not self.display_name:
            self.display_name = self.name.replace("_", " ").title()
        return self


class RoleCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., pattern=ROLE_NAME_PATTERN, min_length=3, max_length=120)
    display_name: str = Field(..., alias="displayName", min_length=1, max_length=255)
    description: str = Field(default="", max_length=512)
    permissions: List[str] = Field(default_factory=list, description="Permission names.")
    priority: int = Field(default=100, ge=0)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: Optional[str] = Field(default=None, alias="displayName", max_length=255)
    description: Optional[str] = Field(default=None, max_length=512)
    permissions: Optional[List[str]] = None
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    force: bool = False


class RoleResponse(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: str
    permissions: List[str]
    is_system: bool
    is_active: bool
    priority: int
    user_count: int
    created_at: datetime
    updated_at: datetime


class RoleListResponse(BaseModel):
    roles: List[RoleResponse]
    total: int
