"""Pydantic schemas for API payloads and the declarative document."""

from rbac_engine.schemas.authorization import AuthorizationRequest, AuthorizationResponse
from rbac_engine.schemas.declaration import Declaration
from rbac_engine.schemas.permission import (
    PermissionListResponse,
    PermissionResponse,
    PermissionSpec,
    PermissionUpdate,
)
from rbac_engine.schemas.role import RoleCreate, RoleListResponse, RoleResponse, RoleSpec, RoleUpdate
from rbac_engine.schemas.user import (
    ResolvedPermissionsResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserRoleUpdate,
    UserUpdate,
)

__all__ = [
    "AuthorizationRequest",
    "AuthorizationResponse",
    "Declaration",
    "PermissionListResponse",
    "PermissionResponse",
    "PermissionSpec",
    "PermissionUpdate",
    "ResolvedPermissionsResponse",
    "RoleCreate",
    "RoleListResponse",
    "RoleResponse",
    "RoleSpec",
    "RoleUpdate",
    "UserCreate",
    "UserListResponse",
    "UserResponse",
    "UserRoleUpdate",
    "UserUpdate",
]
