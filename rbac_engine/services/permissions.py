"""Permission registry."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from rbac_engine.models.permission import Permission, PermissionCategory
from rbac_engine.schemas.permission import PermissionSpec, PermissionUpdate
from rbac_engine.services.bindings import invalidate_permission_holders
from rbac_engine.services.cache import PermissionCache, get_permission_cache

_CATEGORY_BY_RESOURCE = {
    "users": PermissionCategory.USER_MANAGEMENT,
    "roles": PermissionCategory.USER_MANAGEMENT,
    "permissions": PermissionCategory.USER_MANAGEMENT,
    "soil": PermissionCategory.TESTING,
    "water": PermissionCategory.TESTING,
    "fertilizer": PermissionCategory.TESTING,
    "projects": PermissionCategory.PROJECTS,
    "project": PermissionCategory.PROJECTS,
    "farm": PermissionCategory.PROJECTS,
    "farms": PermissionCategory.PROJECTS,
    "billing": PermissionCategory.BILLING,
    "managerial": PermissionCategory.BILLING,
    "files": PermissionCategory.FILES,
    "reports": PermissionCategory.REPORTS,
    "system": PermissionCategory.SYSTEM,
}


class PermissionServiceError(Exception):
    """Base class for permission registry errors."""


class PermissionNotFoundError(PermissionServiceError):
    """Raised when a permission cannot be found."""


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


@dataclass
class PermissionUpsertResult:
    name: str
    outcome: UpsertOutcome
    warnings: List[str] = field(default_factory=list)
    permission: Optional[Permission] = None
    invalidated: int = 0


@dataclass
class PermissionLookup:
    """Result of resolving permission names against storage.

    ``found`` only holds active permissions; unknown and inactive names are
    reported separately so the caller decides whether to fail.
    """

    found: Dict[str, Permission] = field(default_factory=dict)
    missing: Set[str] = field(default_factory=set)
    inactive: Set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.inactive


def derive_category(resource: str) -> PermissionCategory:
    head = resource.split("-", 1)[0].split(".", 1)[0]
    return _CATEGORY_BY_RESOURCE.get(resource, _CATEGORY_BY_RESOURCE.get(head, PermissionCategory.OTHER))


class PermissionRegistry:
    """Catalog of atomic capabilities.

    Toggling a permission's active flag changes the resolved set of every
    user whose role grants it, so their cache entries are dropped as well.
    """

    def __init__(self, session: Session, *, cache: Optional[PermissionCache] = None) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_permission_cache()
        self._logger = logging.getLogger("rbac_engine.services.permissions")

    def upsert(self, spec: PermissionSpec, *, dry_run: bool = False) -> PermissionUpsertResult:
        """Create the permission if absent, otherwise update its mutable fields.

        ``name``, ``resource`` and ``action`` are immutable once stored; a
        differing declared value is reported as a warning and never applied.
        """

        permission = self.get_by_name(spec.name)
        resource = permission.resource if permission is not None else spec.resource
        category = (spec.category or derive_category(resource or "")).value

        if permission is None:
            if not dry_run:
                permission = Permission(
                    name=spec.name,
                    resource=spec.resource,
                    action=spec.action.value,
                    description=spec.description,
                    category=category,
                    tags=list(spec.tags or []),
                    is_active=True if spec.active is None else spec.active,
                )
                self._session.add(permission)
                self._session.flush()
                self._logger.info("permission_created", extra={"permission": spec.name})
            return PermissionUpsertResult(spec.name, UpsertOutcome.CREATED, permission=permission)

        warnings: List[str] = []
        if permission.resource != spec.resource:
            warnings.append(
                f"permission '{spec.name}': resource is immutable "
                f"(stored '{permission.resource}', declared '{spec.resource}')"
            )
        if permission.action != spec.action.value:
            warnings.append(
                f"permission '{spec.name}': action is immutable "
                f"(stored '{permission.action}', declared '{spec.action.value}')"
            )
        for warning in warnings:
            self._logger.warning("permission_identity_change_ignored", extra={"detail": warning})

        changes: Dict[str, object] = {}
        if permission.description != spec.description:
            changes["description"] = spec.description
        if permission.category != category:
            changes["category"] = category
        if spec.tags is not None and list(permission.tags or []) != list(spec.tags):
            changes["tags"] = list(spec.tags)
        if spec.active is not None and permission.is_active != spec.active:
            changes["is_active"] = spec.active

        if not changes:
            return PermissionUpsertResult(spec.name, UpsertOutcome.UNCHANGED, warnings, permission)

        if not dry_run:
            for attribute, value in changes.items():
                setattr(permission, attribute, value)
            self._session.flush()
            self._logger.info(
                "permission_updated",
                extra={"permission": spec.name, "fields": sorted(changes)},
            )
        invalidated = 0
        if "is_active" in changes:
            invalidated = self._invalidate_holders(permission, dry_run=dry_run)
        return PermissionUpsertResult(spec.name, UpsertOutcome.UPDATED, warnings, permission, invalidated)

    def find_by_names(self, names: Iterable[str]) -> PermissionLookup:
        wanted = set(names)
        lookup = PermissionLookup()
        if not wanted:
            return lookup

        stmt = select(Permission).where(Permission.name.in_(wanted))
        for permission in self._session.scalars(stmt):
            if permission.is_active:
                lookup.found[permission.name] = permission
            else:
                lookup.inactive.add(permission.name)
        lookup.missing = wanted - set(lookup.found) - lookup.inactive
        return lookup

    def get_by_name(self, name: str) -> Optional[Permission]:
        return self._session.scalar(select(Permission).where(Permission.name == name))

    def get_permission(self, name: str) -> Permission:
        permission = self.get_by_name(name)
        if permission is None:
            raise PermissionNotFoundError(f"Permission '{name}' not found")
        return permission

    def list_permissions(
        self,
        *,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        category: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[Permission]:
        stmt = select(Permission)
        if not include_inactive:
            stmt = stmt.where(Permission.is_active.is_(True))
        if resource:
            stmt = stmt.where(Permission.resource == resource)
        if action:
            stmt = stmt.where(Permission.action == action)
        if category:
            stmt = stmt.where(Permission.category == category)
        stmt = stmt.order_by(Permission.resource, Permission.action, Permission.name)
        return list(self._session.scalars(stmt))

    def list_names(self) -> Set[str]:
        return set(self._session.scalars(select(Permission.name)))

    def update_permission(self, name: str, payload: PermissionUpdate) -> Permission:
        permission = self.get_permission(name)
        updates = payload.model_dump(exclude_unset=True)

        if updates.get("description") is not None:
            permission.description = updates["description"]
        if updates.get("category") is not None:
            permission.category = PermissionCategory(updates["category"]).value
        if updates.get("tags") is not None:
            permission.tags = list(updates["tags"])
        toggled = updates.get("is_active") is not None and updates["is_active"] != permission.is_active
        if toggled:
            permission.is_active = updates["is_active"]

        self._session.flush()
        self._logger.info("permission_updated", extra={"permission": name, "fields": sorted(updates)})
        if toggled:
            self._invalidate_holders(permission)
        return permission

    def _invalidate_holders(self, permission: Permission, *, dry_run: bool = False) -> int:
        count = invalidate_permission_holders(self._session, permission.id, self._cache, dry_run=dry_run)
        if count and not dry_run:
            self._logger.info(
                "permission_holders_invalidated",
                extra={"permission": permission.name, "is_active": permission.is_active, "users": count},
            )
        return count

    @staticmethod
    def group_by_resource(permissions: Iterable[Permission]) -> Dict[str, List[Permission]]:
        grouped: Dict[str, List[Permission]] = defaultdict(list)
        for permission in permissions:
            grouped[permission.resource].append(permission)
        return dict(grouped)
