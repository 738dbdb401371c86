"""Role registry service logic."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from rbac_engine.core.config import AppSettings, get_settings
from rbac_engine.models.role import Role
from rbac_engine.schemas.role import RoleCreate, RoleSpec, RoleUpdate
from rbac_engine.services.bindings import (
    AdminFloorViolationError,
    PropagationResult,
    bound_user_counts,
    count_bound_users,
    ensure_admin_floor,
    propagate_role,
)
from rbac_engine.services.cache import PermissionCache, get_permission_cache
from rbac_engine.services.permissions import PermissionLookup, PermissionRegistry, UpsertOutcome

REASON_SYSTEM_ROLE = "system-role-protected"
REASON_ROLE_IN_USE = "role-in-use"
REASON_UNKNOWN_PERMISSION = "unknown-permission-reference"
REASON_INACTIVE_PERMISSION = "inactive-permission-reference"
REASON_DUPLICATE_PERMISSION = "duplicate-permission"

_PROTECTION_REASONS = {REASON_SYSTEM_ROLE, REASON_ROLE_IN_USE, AdminFloorViolationError.reason}


class RoleServiceError(Exception):
    """Base class for role service errors."""


class RoleNotFoundError(RoleServiceError):
    """Raised when a role cannot be found."""


class RoleConflictError(RoleServiceError):
    """Raised when attempting to create a role that already exists."""


class InvalidPermissionSetError(RoleServiceError):
    """Raised when a role's permission names are unknown, inactive or repeated."""

    def __init__(self, message: str, *, reason: str, permissions: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.reason = reason
        self.permissions = list(permissions)


class RoleProtectionError(RoleServiceError):
    """Raised when an operation would break a role protection rule."""

    def __init__(self, message: str, *, reason: str, user_count: Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.user_count = user_count


@dataclass
class RoleUpsertResult:
    name: str
    outcome: UpsertOutcome
    reason: Optional[str] = None
    message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)
    role: Optional[Role] = None
    propagation: Optional[PropagationResult] = None

    @property
    def rejected(self) -> bool:
        return self.outcome is UpsertOutcome.REJECTED


class RoleService:
    """Coordinates role lifecycle through a single validated write path."""

    def __init__(
        self,
        session: Session,
        *,
        permissions: Optional[PermissionRegistry] = None,
        cache: Optional[PermissionCache] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_permission_cache()
        self._permissions = permissions or PermissionRegistry(session, cache=self._cache)
        self._settings = settings or get_settings()
        self._logger = logging.getLogger("rbac_engine.services.roles")

    def upsert(
        self,
        spec: RoleSpec,
        *,
        force: bool = False,
        dry_run: bool = False,
        lookup: Optional[PermissionLookup] = None,
    ) -> RoleUpsertResult:
        """Converge one role to ``spec``, replacing its permission set wholesale.

        Every check runs before the first mutation, so a role is either fully
        replaced or left untouched. ``lookup`` lets the reconciler supply a
        pre-computed view of the permission catalog (used by dry runs).
        """

        duplicates = sorted(name for name, count in Counter(spec.permissions).items() if count > 1)
        if duplicates:
            return self._reject(
                spec.name,
                REASON_DUPLICATE_PERMISSION,
                f"Role '{spec.name}' lists permissions more than once: {', '.join(duplicates)}",
            )

        lookup = lookup if lookup is not None else self._permissions.find_by_names(spec.permissions)
        if lookup.missing:
            return self._reject(
                spec.name,
                REASON_UNKNOWN_PERMISSION,
                f"Role '{spec.name}' references unknown permissions: {', '.join(sorted(lookup.missing))}",
            )
        if lookup.inactive:
            return self._reject(
                spec.name,
                REASON_INACTIVE_PERMISSION,
                f"Role '{spec.name}' references inactive permissions: {', '.join(sorted(lookup.inactive))}",
            )

        role = self.get_by_name(spec.name)
        if role is None:
            if not dry_run:
                role = Role(
                    name=spec.name,
                    display_name=spec.display_name,
                    description=spec.description,
                    is_system=spec.is_system,
                    is_active=True if spec.active is None else spec.active,
                    priority=spec.priority,
                )
                role.permissions = [lookup.found[name] for name in spec.permissions]
                self._session.add(role)
                self._session.flush()
                self._logger.info(
                    "role_created",
                    extra={"role": spec.name, "permissions": len(spec.permissions), "is_system": spec.is_system},
                )
            return RoleUpsertResult(spec.name, UpsertOutcome.CREATED, role=role)

        warnings: List[str] = []
        if spec.is_system != role.is_system:
            warnings.append(f"role '{spec.name}': is_system is fixed at creation and was not changed")

        changes = self._diff(role, spec)
        if not changes:
            return RoleUpsertResult(spec.name, UpsertOutcome.UNCHANGED, warnings=warnings, role=role)

        if role.is_system and not force:
            result = self._reject(
                spec.name,
                REASON_SYSTEM_ROLE,
                f"Role '{spec.name}' is a system role; updates require force",
            )
            result.warnings = warnings
            result.changes = changes
            return result

        if spec.active is False and role.is_active and role.name == self._settings.admin_role_name:
            try:
                ensure_admin_floor(self._session, self._settings.admin_role_name, removing_all=True)
            except AdminFloorViolationError as exc:
                return self._reject(spec.name, exc.reason, str(exc))

        if not dry_run:
            role.display_name = spec.display_name
            role.description = spec.description
            role.priority = spec.priority
            if spec.active is not None:
                role.is_active = spec.active
            if "permissions" in changes:
                role.permissions = [lookup.found[name] for name in spec.permissions]
            self._session.flush()
            self._logger.info("role_updated", extra={"role": spec.name, "fields": changes, "forced": force})

        return RoleUpsertResult(spec.name, UpsertOutcome.UPDATED, warnings=warnings, changes=changes, role=role)

    def create(self, payload: RoleCreate) -> Role:
        """Create a custom role through the same validated path as declarations."""

        if self.get_by_name(payload.name) is not None:
            raise RoleConflictError(f"Role '{payload.name}' already exists")

        spec = RoleSpec(
            name=payload.name,
            display_name=payload.display_name,
            description=payload.description,
            permissions=payload.permissions,
            is_system=False,
            priority=payload.priority,
        )
        try:
            result = self.upsert(spec)
        except IntegrityError as exc:
            self._session.rollback()
            raise RoleConflictError(f"Role '{payload.name}' already exists") from exc

        if result.rejected:
            raise InvalidPermissionSetError(result.message or "Invalid permission set", reason=result.reason or "")
        return result.role

    def update(self, name: str, payload: RoleUpdate) -> RoleUpsertResult:
        """Apply an admin edit by merging it over the stored role and upserting."""

        role = self.get_role(name)
        updates = payload.model_dump(exclude_unset=True)
        permissions = updates.get("permissions")
        spec = RoleSpec(
            name=role.name,
            display_name=updates.get("display_name") or role.display_name,
            description=role.description if updates.get("description") is None else updates["description"],
            permissions=role.permission_names if permissions is None else permissions,
            is_system=role.is_system,
            priority=role.priority if updates.get("priority") is None else updates["priority"],
            active=updates.get("is_active"),
        )

        result = self.upsert(spec, force=payload.force)
        if result.rejected:
            if result.reason in _PROTECTION_REASONS:
                raise RoleProtectionError(result.message or "Role is protected", reason=result.reason or "")
            raise InvalidPermissionSetError(result.message or "Invalid permission set", reason=result.reason or "")

        if result.outcome is UpsertOutcome.UPDATED:
            result.propagation = propagate_role(self._session, role, self._cache)
        return result

    def delete(self, name: str) -> None:
        role = self.get_role(name)
        if role.is_system:
            self._logger.warning("role_delete_rejected", extra={"role": name, "reason": REASON_SYSTEM_ROLE})
            raise RoleProtectionError(f"Role '{name}' is a system role and cannot be deleted", reason=REASON_SYSTEM_ROLE)

        user_count = count_bound_users(self._session, role.name)
        if user_count > 0:
            self._logger.warning("role_delete_rejected", extra={"role": name, "reason": REASON_ROLE_IN_USE})
            raise RoleProtectionError(
                f"{user_count} user(s) still have role '{name}'; reassign them first",
                reason=REASON_ROLE_IN_USE,
                user_count=user_count,
            )

        self._session.delete(role)
        self._session.flush()
        self._logger.info("role_deleted", extra={"role": name})

    def list_roles(self, *, include_inactive: bool = False) -> List[Role]:
        stmt = select(Role).options(selectinload(Role.permissions))
        if not include_inactive:
            stmt = stmt.where(Role.is_active.is_(True))
        stmt = stmt.order_by(Role.priority, Role.name)
        return list(self._session.scalars(stmt))

    def get_role(self, name: str) -> Role:
        role = self.get_by_name(name)
        if role is None:
            raise RoleNotFoundError(f"Role '{name}' not found")
        return role

    def get_by_name(self, name: str) -> Optional[Role]:
        return self._session.scalar(select(Role).where(Role.name == name.strip().lower()))

    def user_count(self, name: str) -> int:
        return count_bound_users(self._session, name)

    def user_counts(self) -> Dict[str, int]:
        return bound_user_counts(self._session)

    def _diff(self, role: Role, spec: RoleSpec) -> List[str]:
        changes: List[str] = []
        if role.display_name != spec.display_name:
            changes.append("display_name")
        if role.description != spec.description:
            changes.append("description")
        if role.priority != spec.priority:
            changes.append("priority")
        if spec.active is not None and role.is_active != spec.active:
            changes.append("is_active")
        if sorted(role.permission_names) != sorted(spec.permissions):
            changes.append("permissions")
        return changes

    def _reject(self, name: str, reason: str, message: str) -> RoleUpsertResult:
        self._logger.warning("role_sync_rejected", extra={"role": name, "reason": reason, "detail": message})
        return RoleUpsertResult(name, UpsertOutcome.REJECTED, reason=reason, message=message)
