"""Request-time authorization decision procedure.

Everything in this module is pure: callers resolve the actor's permissions
beforehand (see :class:`rbac_engine.services.authorization.PermissionResolver`) and pass them in.
The functions never perform I/O and never raise for a denial; a denial is a
regular :class:`Decision` carrying the missing permission names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple
from uuid import UUID

REASON_ADMIN_BYPASS = "admin-bypass"
REASON_GRANTED = "granted"
REASON_NOT_OWNER = "not-owner"
MISSING_PREFIX = "missing:"


class RequirementMode(str, Enum):
    """How the named permissions of a requirement combine."""

    ALL = "all"
    ANY = "any"


@dataclass(frozen=True)
class ResolvedPermissions:
    """The permission set an actor holds through their current role."""

    user_id: UUID
    role: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    is_admin: bool = False

    def holds(self, name: str) -> bool:
        return name in self.permissions


@dataclass(frozen=True)
class PermissionRequirement:
    """Permissions a protected operation demands."""

    permissions: Tuple[str, ...]
    mode: RequirementMode = RequirementMode.ALL
    allow_admin: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.permissions, str):
            object.__setattr__(self, "permissions", (self.permissions,))
        else:
            object.__setattr__(self, "permissions", tuple(self.permissions))
        if not self.permissions:
            raise ValueError("a permission requirement names at least one permission")
        object.__setattr__(self, "mode", RequirementMode(self.mode))

    @classmethod
    def all_of(cls, *names: str, allow_admin: bool = True) -> "PermissionRequirement":
        return cls(permissions=names, mode=RequirementMode.ALL, allow_admin=allow_admin)

    @classmethod
    def any_of(cls, *names: str, allow_admin: bool = True) -> "PermissionRequirement":
        return cls(permissions=names, mode=RequirementMode.ANY, allow_admin=allow_admin)


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization check."""

    allowed: bool
    reason: str
    missing: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, reason: str = REASON_GRANTED) -> "Decision":
        return cls(allowed=True, reason=reason)

    @classmethod
    def deny(cls, missing: Iterable[str]) -> "Decision":
        missing = tuple(missing)
        return cls(allowed=False, reason=MISSING_PREFIX + ",".join(missing), missing=missing)


def authorize(actor: ResolvedPermissions, requirement: PermissionRequirement) -> Decision:
    """Evaluate ``requirement`` against the actor's resolved permissions."""

    if requirement.allow_admin and actor.is_admin:
        return Decision.allow(REASON_ADMIN_BYPASS)

    if requirement.mode is RequirementMode.ANY:
        if any(actor.holds(name) for name in requirement.permissions):
            return Decision.allow()
        return Decision.deny(_unique(requirement.permissions))

    missing = [name for name in _unique(requirement.permissions) if not actor.holds(name)]
    if missing:
        return Decision.deny(missing)
    return Decision.allow()


def authorize_owned(
    actor: ResolvedPermissions,
    requirement: PermissionRequirement,
    owner_id: Optional[UUID],
) -> Decision:
    """Permission check narrowed to records owned by the actor.

    Ownership is evaluated only after the permission check passes, so owning a
    record never stands in for a missing permission.
    """

    decision = authorize(actor, requirement)
    if not decision.allowed or decision.reason == REASON_ADMIN_BYPASS:
        return decision
    if owner_id is None or owner_id != actor.user_id:
        return Decision(allowed=False, reason=REASON_NOT_OWNER)
    return decision


def _unique(names: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(names))
