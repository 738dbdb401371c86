"""User management and role-binding endpoints."""

from __future__ import annotations

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from rbac_engine.api.dependencies import get_permission_resolver, get_user_service
from rbac_engine.api.guards import require_any_permission, require_permissions
from rbac_engine.schemas.user import (
    ResolvedPermissionsResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserRoleUpdate,
    UserUpdate,
)
from rbac_engine.services.authorization import PermissionResolver
from rbac_engine.services.decision import ResolvedPermissions
from rbac_engine.services.users import UserService

router = APIRouter()


@router.get(
    "",
    response_model=UserListResponse,
    dependencies=[Depends(require_permissions("users.view"))],
)
def list_users(
    role: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    users, total = service.list_users(role=role, search=search, page=page, limit=limit)
    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("users.create"))],
)
def create_user(
    payload: UserCreate,
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.model_validate(service.create_user(payload))


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions("users.view"))],
)
def get_user(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.model_validate(service.get_user(user_id))


@router.get(
    "/{user_id}/permissions",
    response_model=ResolvedPermissionsResponse,
    dependencies=[Depends(require_any_permission("users.view", "roles.view"))],
)
def get_user_permissions(
    user_id: UUID,
    resolver: PermissionResolver = Depends(get_permission_resolver),
) -> ResolvedPermissionsResponse:
    resolved = resolver.resolve_live(user_id)
    return ResolvedPermissionsResponse(
        user_id=resolved.user_id,
        role=resolved.role,
        is_admin=resolved.is_admin,
        permissions=sorted(resolved.permissions),
    )


@router.put(
    "/{user_id}/role",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions("users.assign"))],
)
def assign_role(
    user_id: UUID,
    payload: UserRoleUpdate,
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.model_validate(service.assign_role(user_id, payload.role))


@router.patch(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions("users.update"))],
)
def update_user(
    user_id: UUID,
    payload: UserUpdate,
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.model_validate(service.update_user(user_id, payload))


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_200_OK,
)
def delete_user(
    user_id: UUID,
    actor: ResolvedPermissions = Depends(require_permissions("users.delete", allow_admin=False)),
    service: UserService = Depends(get_user_service),
) -> dict[str, str]:
    service.delete_user(user_id, actor_id=actor.user_id)
    return {"status": "deleted", "user_id": str(user_id)}
