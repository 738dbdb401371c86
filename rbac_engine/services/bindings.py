"""Queries and propagation helpers around the user-role binding."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from rbac_engine.models.role import Role
from rbac_engine.models.role_permission import RolePermission
from rbac_engine.models.user import User
from rbac_engine.services.cache import PermissionCache

REASON_ADMIN_FLOOR = "admin-floor-violation"

_logger = logging.getLogger("rbac_engine.services.bindings")


class AdminFloorViolationError(Exception):
    """Raised when an operation would leave no active administrator."""

    reason = REASON_ADMIN_FLOOR


@dataclass
class PropagationResult:
    refreshed: int = 0
    invalidated: int = 0

    def __iadd__(self, other: "PropagationResult") -> "PropagationResult":
        self.refreshed += other.refreshed
        self.invalidated += other.invalidated
        return self


def count_bound_users(session: Session, role_name: str) -> int:
    stmt = select(func.count()).select_from(User).where(User.role == role_name)
    return int(session.scalar(stmt) or 0)


def bound_user_counts(session: Session) -> Dict[str, int]:
    stmt = select(User.role, func.count()).group_by(User.role)
    return {role: int(count) for role, count in session.execute(stmt).all()}


def active_admin_ids(session: Session, admin_role_name: str, *, lock: bool = False) -> List[UUID]:
    """Ids of active users whose binding grants full administrative capability."""

    stmt = (
        select(User.id)
        .join(Role, Role.id == User.role_id)
        .where(User.role == admin_role_name)
        .where(Role.name == admin_role_name)
        .where(User.is_active.is_(True))
        .where(Role.is_active.is_(True))
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(session.scalars(stmt))


def ensure_admin_floor(
    session: Session,
    admin_role_name: str,
    *,
    removing: Iterable[UUID] = (),
    removing_all: bool = False,
) -> None:
    """Reject an operation that would strip the last active administrator.

    ``removing`` names users about to lose administrative capability;
    ``removing_all`` covers operations on the administrator role itself.
    Runs inside the caller's transaction, immediately before the write.
    """

    admins = set(active_admin_ids(session, admin_role_name, lock=True))
    remaining = set() if removing_all else admins - set(removing)
    if admins and not remaining:
        _logger.warning(
            "admin_floor_violation",
            extra={"admins": [str(admin_id) for admin_id in admins]},
        )
        raise AdminFloorViolationError("Operation would leave no active administrator")


def propagate_role(
    session: Session,
    role: Role,
    cache: PermissionCache,
    *,
    dry_run: bool = False,
) -> PropagationResult:
    """Re-point users bound to ``role`` by name and drop their cached permissions."""

    result = PropagationResult()
    users = session.scalars(select(User).where(User.role == role.name)).all()
    for user in users:
        if user.role_id != role.id:
            _logger.warning(
                "role_binding_drift",
                extra={"user_id": str(user.id), "role": role.name, "stale_role_id": str(user.role_id)},
            )
            if not dry_run:
                user.role_id = role.id
            result.refreshed += 1
        if not dry_run:
            cache.invalidate_for_user(str(user.id))
        result.invalidated += 1
    if not dry_run:
        session.flush()
    return result


def repair_drift(
    session: Session,
    role_names: Iterable[str],
    cache: PermissionCache,
    *,
    dry_run: bool = False,
) -> PropagationResult:
    """Fix bindings whose ``role_id`` no longer matches their role name.

    Only mismatched rows are selected, so the cost follows the drift rather
    than the user count.
    """

    names = list(role_names)
    result = PropagationResult()
    if not names:
        return result

    stmt = (
        select(User, Role)
        .join(Role, Role.name == User.role)
        .where(User.role.in_(names))
        .where(or_(User.role_id.is_(None), User.role_id != Role.id))
    )
    for user, role in session.execute(stmt).all():
        _logger.warning(
            "role_binding_drift",
            extra={"user_id": str(user.id), "role": role.name, "stale_role_id": str(user.role_id)},
        )
        if not dry_run:
            user.role_id = role.id
            cache.invalidate_for_user(str(user.id))
        result.refreshed += 1
        result.invalidated += 1
    if not dry_run:
        session.flush()
    return result


def invalidate_permission_holders(
    session: Session,
    permission_id: UUID,
    cache: PermissionCache,
    *,
    dry_run: bool = False,
) -> int:
    """Drop cached permissions of every user whose role grants ``permission_id``."""

    stmt = (
        select(User.id)
        .join(Role, Role.name == User.role)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .where(RolePermission.permission_id == permission_id)
    )
    user_ids = list(session.scalars(stmt))
    if not dry_run:
        for user_id in user_ids:
            cache.invalidate_for_user(str(user_id))
    return len(user_ids)
