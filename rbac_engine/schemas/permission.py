"""Permission schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rbac_engine.models.permission import PERMISSION_NAME_PATTERN, PermissionAction, PermissionCategory


class PermissionSpec(BaseModel):
    """A permission as declared in the configuration document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., pattern=PERMISSION_NAME_PATTERN, max_length=255)
    resource: Optional[str] = Field(default=None, min_length=1, max_length=255)
    action: Optional[PermissionAction] = None
    description: str = Field(default="", max_length=1024)
    category: Optional[PermissionCategory] = None
    tags: Optional[List[str]] = None
    active: Optional[bool] = Field(default=None, description="None leaves the stored flag untouched.")

    @model_validator(mode="after")
    def derive_identity(self) -> "PermissionSpec":
        prefix, _, suffix = self.name.rpartition(".")
        try:
            name_action = PermissionAction(suffix)
        except ValueError as exc:
            raise ValueError(f"permission '{self.name}' ends with unknown action '{suffix}'") from exc
        if self.action is None:
            self.action = name_action
        elif self.action is not name_action:
            raise ValueError(
                f"permission '{self.name}' declares action '{self.action.value}' but its name ends with '{suffix}'"
            )
        if self.resource is None:
            self.resource = prefix.replace(".", "-")
        return self


class PermissionUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=1024)
    category: Optional[PermissionCategory] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


class PermissionResponse(BaseModel):
    id: UUID
    name: str
    resource: str
    action: str
    description: str
    category: str
    tags: List[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionListResponse(BaseModel):
    permissions: List[PermissionResponse]
    grouped_by_resource: Dict[str, List[PermissionResponse]]
    total: int
