"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from typing import Iterator, Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from rbac_engine.core.database import get_session
from rbac_engine.services.authorization import (
    ActorInactiveError,
    ActorNotFoundError,
    AuthorizationService,
    PermissionResolver,
)
from rbac_engine.services.cache import get_permission_cache
from rbac_engine.services.decision import ResolvedPermissions
from rbac_engine.services.permissions import PermissionRegistry
from rbac_engine.services.roles import RoleService
from rbac_engine.services.users import UserService


class NotAuthenticatedError(Exception):
    """Raised when a protected route is called without a known, active actor."""


def get_db_session() -> Iterator[Session]:
    yield from get_session()


def get_permission_registry(session: Session = Depends(get_db_session)) -> PermissionRegistry:
    return PermissionRegistry(session, cache=get_permission_cache())


def get_role_service(session: Session = Depends(get_db_session)) -> RoleService:
    return RoleService(session, cache=get_permission_cache())


def get_user_service(session: Session = Depends(get_db_session)) -> UserService:
    return UserService(session, cache=get_permission_cache())


def get_permission_resolver(session: Session = Depends(get_db_session)) -> PermissionResolver:
    return PermissionResolver(session, cache=get_permission_cache())


def get_authorization_service(session: Session = Depends(get_db_session)) -> AuthorizationService:
    return AuthorizationService(session, cache=get_permission_cache())


def get_current_actor(
    x_actor_id: Optional[UUID] = Header(default=None, alias="X-Actor-Id"),
    resolver: PermissionResolver = Depends(get_permission_resolver),
) -> ResolvedPermissions:
    """Resolve the authenticated actor's permissions for this request."""

    if x_actor_id is None:
        raise NotAuthenticatedError("Authentication required")
    try:
        return resolver.resolve(x_actor_id)
    except (ActorNotFoundError, ActorInactiveError) as exc:
        raise NotAuthenticatedError("Authentication required") from exc
