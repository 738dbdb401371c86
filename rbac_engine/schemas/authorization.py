"""Authorization endpoint schemas."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from rbac_engine.services.decision import RequirementMode


class AuthorizationRequest(BaseModel):
    user_id: UUID
    permissions: List[str] = Field(..., min_length=1)
    mode: RequirementMode = RequirementMode.ALL
    allow_admin: bool = True
    owner_id: Optional[UUID] = Field(default=None, description="Owner of the target record, if ownership applies.")


class AuthorizationResponse(BaseModel):
    allowed: bool
    reason: str
    missing: List[str]
