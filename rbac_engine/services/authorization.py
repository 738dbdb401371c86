"""Permission resolution and authorization evaluation service."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rbac_engine.core.config import AppSettings, get_settings
from rbac_engine.models.role import Role
from rbac_engine.models.user import User
from rbac_engine.services.cache import PermissionCache, get_permission_cache
from rbac_engine.services.decision import (
    Decision,
    PermissionRequirement,
    ResolvedPermissions,
    authorize,
    authorize_owned,
)


class AuthorizationError(Exception):
    """Base class for authorization service errors."""


class ActorNotFoundError(AuthorizationError):
    """Raised when the acting user does not exist."""


class ActorInactiveError(AuthorizationError):
    """Raised when the acting user has been deactivated."""


class PermissionResolver:
    """Loads a user's effective permission set, consulting the cache first."""

    def __init__(
        self,
        session: Session,
        cache: Optional[PermissionCache] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_permission_cache()
        self._settings = settings or get_settings()
        self._logger = logging.getLogger("rbac_engine.services.authorization")

    def resolve(self, user_id: UUID) -> ResolvedPermissions:
        cached = self._cache.get(str(user_id))
        if cached is not None:
            return cached

        resolved = self.resolve_live(user_id)
        self._cache.set(str(user_id), resolved)
        return resolved

    def resolve_live(self, user_id: UUID) -> ResolvedPermissions:
        """Resolve straight from storage, bypassing the cache."""

        user = self._session.get(User, user_id)
        if user is None:
            raise ActorNotFoundError(f"User {user_id} not found")
        if not user.is_active:
            raise ActorInactiveError(f"User {user_id} is inactive")

        role = self._bound_role(user)
        if role is None or not role.is_active:
            return ResolvedPermissions(user_id=user.id, role=user.role)

        return ResolvedPermissions(
            user_id=user.id,
            role=role.name,
            permissions=frozenset(permission.name for permission in role.permissions if permission.is_active),
            is_admin=role.name == self._settings.admin_role_name,
        )

    def _bound_role(self, user: User) -> Optional[Role]:
        if user.role_id is not None:
            role = self._session.scalar(
                select(Role).where(Role.id == user.role_id).options(selectinload(Role.permissions))
            )
            if role is not None and role.name == user.role:
                return role

        # role_id missing or pointing elsewhere: trust the name and report the drift.
        self._logger.warning(
            "role_binding_drift",
            extra={"user_id": str(user.id), "role": user.role, "role_id": str(user.role_id)},
        )
        return self._session.scalar(
            select(Role).where(Role.name == user.role).options(selectinload(Role.permissions))
        )


class AuthorizationService:
    """Evaluates whether a user satisfies a permission requirement."""

    def __init__(
        self,
        session: Session,
        cache: Optional[PermissionCache] = None,
        resolver: Optional[PermissionResolver] = None,
    ) -> None:
        self._resolver = resolver or PermissionResolver(session, cache=cache)
        self._logger = logging.getLogger("rbac_engine.services.authorization")

    def check(
        self,
        user_id: UUID,
        requirement: PermissionRequirement,
        *,
        owner_id: Optional[UUID] = None,
        enforce_ownership: bool = False,
    ) -> Decision:
        actor = self._resolver.resolve(user_id)
        if enforce_ownership:
            decision = authorize_owned(actor, requirement, owner_id)
        else:
            decision = authorize(actor, requirement)

        extra = {
            "user_id": str(user_id),
            "role": actor.role,
            "permissions": list(requirement.permissions),
            "mode": requirement.mode.value,
            "reason": decision.reason,
        }
        if decision.allowed:
            self._logger.info("authorization_granted", extra=extra)
        else:
            self._logger.info("authorization_denied", extra=extra)
        return decision
