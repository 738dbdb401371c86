"""Permission catalog endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from rbac_engine.api.dependencies import get_permission_registry
from rbac_engine.api.guards import require_permissions
from rbac_engine.schemas.permission import PermissionListResponse, PermissionResponse, PermissionUpdate
from rbac_engine.services.permissions import PermissionRegistry

router = APIRouter()


@router.get(
    "",
    response_model=PermissionListResponse,
    dependencies=[Depends(require_permissions("permissions.view"))],
)
def list_permissions(
    resource: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False),
    registry: PermissionRegistry = Depends(get_permission_registry),
) -> PermissionListResponse:
    permissions = registry.list_permissions(
        resource=resource,
        action=action,
        category=category,
        include_inactive=include_inactive,
    )
    items = [PermissionResponse.model_validate(permission) for permission in permissions]
    grouped = {
        resource_name: [PermissionResponse.model_validate(permission) for permission in members]
        for resource_name, members in registry.group_by_resource(permissions).items()
    }
    return PermissionListResponse(permissions=items, grouped_by_resource=grouped, total=len(items))


@router.get(
    "/{permission_name}",
    response_model=PermissionResponse,
    dependencies=[Depends(require_permissions("permissions.view"))],
)
def get_permission(
    permission_name: str,
    registry: PermissionRegistry = Depends(get_permission_registry),
) -> PermissionResponse:
    return PermissionResponse.model_validate(registry.get_permission(permission_name))


@router.patch(
    "/{permission_name}",
    response_model=PermissionResponse,
    dependencies=[Depends(require_permissions("permissions.update"))],
)
def update_permission(
    permission_name: str,
    payload: PermissionUpdate,
    registry: PermissionRegistry = Depends(get_permission_registry),
) -> PermissionResponse:
    permission = registry.update_permission(permission_name, payload)
    return PermissionResponse.model_validate(permission)
