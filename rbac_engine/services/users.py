"""User accounts and the user-role binding."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbac_engine.core.config import AppSettings, get_settings
from rbac_engine.models.role import Role
from rbac_engine.models.user import User
from rbac_engine.schemas.user import UserCreate, UserUpdate
from rbac_engine.services.bindings import ensure_admin_floor
from rbac_engine.services.cache import PermissionCache, get_permission_cache
from rbac_engine.services.roles import RoleNotFoundError

REASON_SELF_DELETION = "self-deletion-forbidden"


class UserServiceError(Exception):
    """Base class for user service errors."""


class UserNotFoundError(UserServiceError):
    """Raised when a user cannot be found."""


class UserConflictError(UserServiceError):
    """Raised when an email address is already registered."""


class SelfDeletionError(UserServiceError):
    """Raised when an actor tries to delete their own account."""

    reason = REASON_SELF_DELETION


class UserService:
    """Owns the only write path for a user's ``role``/``role_id`` pair."""

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[PermissionCache] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_permission_cache()
        self._settings = settings or get_settings()
        self._logger = logging.getLogger("rbac_engine.services.users")

    def create_user(self, payload: UserCreate) -> User:
        role = self._get_assignable_role(payload.role or self._settings.default_role_name)
        email = payload.email.strip().lower()
        if self._session.scalar(select(User.id).where(User.email == email)) is not None:
            raise UserConflictError(f"User '{email}' already exists")

        user = User(email=email, name=payload.name, role=role.name, role_id=role.id, is_active=True)
        self._session.add(user)
        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            raise UserConflictError(f"User '{email}' already exists") from exc

        self._logger.info("user_created", extra={"user_id": str(user.id), "role": role.name})
        return user

    def get_user(self, user_id: UUID) -> User:
        user = self._session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def list_users(
        self,
        *,
        role: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[User], int]:
        stmt = select(User)
        if role:
            stmt = stmt.where(User.role == role)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(or_(func.lower(User.name).like(pattern), User.email.like(pattern)))

        total = int(self._session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        stmt = stmt.order_by(User.created_at.desc(), User.email).limit(limit).offset((page - 1) * limit)
        return list(self._session.scalars(stmt)), total

    def assign_role(self, user_id: UUID, role_name: str) -> User:
        """Bind ``user_id`` to ``role_name``, writing name and reference together."""

        user = self.get_user(user_id)
        role = self._get_assignable_role(role_name)

        if user.role == role.name and user.role_id == role.id:
            return user

        if user.role == self._settings.admin_role_name and role.name != self._settings.admin_role_name:
            ensure_admin_floor(self._session, self._settings.admin_role_name, removing=[user.id])

        previous = user.role
        user.role = role.name
        user.role_id = role.id
        self._session.flush()
        self._cache.invalidate_for_user(str(user.id))

        self._logger.info(
            "user_role_assigned",
            extra={"user_id": str(user.id), "previous_role": previous, "role": role.name},
        )
        return user

    def update_user(self, user_id: UUID, payload: UserUpdate) -> User:
        user = self.get_user(user_id)
        updates = payload.model_dump(exclude_unset=True)

        if updates.get("name"):
            user.name = updates["name"]
        if updates.get("is_active") is not None and updates["is_active"] != user.is_active:
            if not updates["is_active"] and user.role == self._settings.admin_role_name:
                ensure_admin_floor(self._session, self._settings.admin_role_name, removing=[user.id])
            user.is_active = updates["is_active"]
            self._cache.invalidate_for_user(str(user.id))

        self._session.flush()
        self._logger.info("user_updated", extra={"user_id": str(user.id), "fields": sorted(updates)})
        return user

    def delete_user(self, user_id: UUID, *, actor_id: Optional[UUID] = None) -> None:
        if actor_id is not None and actor_id == user_id:
            raise SelfDeletionError("Cannot delete your own account")

        user = self.get_user(user_id)
        if user.role == self._settings.admin_role_name:
            ensure_admin_floor(self._session, self._settings.admin_role_name, removing=[user.id])

        self._session.delete(user)
        self._session.flush()
        self._cache.invalidate_for_user(str(user_id))
        self._logger.info("user_deleted", extra={"user_id": str(user_id), "actor_id": str(actor_id) if actor_id else None})

    def _get_assignable_role(self, role_name: str) -> Role:
        name = role_name.strip().lower()
        role = self._session.scalar(select(Role).where(Role.name == name, Role.is_active.is_(True)))
        if role is None:
            raise RoleNotFoundError(f"Role '{name}' not found or inactive")
        return role
