"""Role management endpoints."""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from rbac_engine.api.dependencies import get_role_service
from rbac_engine.api.guards import require_permissions
from rbac_engine.models.role import Role
from rbac_engine.schemas.role import RoleCreate, RoleListResponse, RoleResponse, RoleUpdate
from rbac_engine.services.roles import RoleService

router = APIRouter()


@router.get(
    "",
    response_model=RoleListResponse,
    dependencies=[Depends(require_permissions("roles.view"))],
)
def list_roles(
    include_inactive: bool = Query(default=False),
    service: RoleService = Depends(get_role_service),
) -> RoleListResponse:
    roles = service.list_roles(include_inactive=include_inactive)
    counts = service.user_counts()
    return RoleListResponse(roles=[_to_role_response(role, counts) for role in roles], total=len(roles))


@router.get(
    "/{role_name}",
    response_model=RoleResponse,
    dependencies=[Depends(require_permissions("roles.view"))],
)
def get_role(
    role_name: str,
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = service.get_role(role_name)
    return _to_role_response(role, {role.name: service.user_count(role.name)})


@router.post(
    "",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("roles.create"))],
)
def create_role(
    payload: RoleCreate,
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = service.create(payload)
    return _to_role_response(role, {role.name: 0})


@router.patch(
    "/{role_name}",
    response_model=RoleResponse,
    dependencies=[Depends(require_permissions("roles.update"))],
)
def update_role(
    role_name: str,
    payload: RoleUpdate,
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    result = service.update(role_name, payload)
    role = result.role
    return _to_role_response(role, {role.name: service.user_count(role.name)})


@router.delete(
    "/{role_name}",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_permissions("roles.delete", allow_admin=False))],
)
def delete_role(
    role_name: str,
    service: RoleService = Depends(get_role_service),
) -> dict[str, str]:
    service.delete(role_name)
    return {"status": "deleted", "role": role_name}


def _to_role_response(role: Role, counts: Dict[str, int], default: Optional[int] = 0) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        permissions=role.permission_names,
        is_system=role.is_system,
        is_active=role.is_active,
        priority=role.priority,
        user_count=counts.get(role.name, default),
        created_at=role.created_at,
        updated_at=role.updated_at,
    )
