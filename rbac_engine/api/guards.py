"""Route guards evaluating permission requirements for the calling actor."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends

from rbac_engine.api.dependencies import get_current_actor
from rbac_engine.services.decision import (
    Decision,
    PermissionRequirement,
    RequirementMode,
    ResolvedPermissions,
    authorize,
)

_logger = logging.getLogger("rbac_engine.api.guards")


class PermissionDeniedError(Exception):
    """Raised by a guard when the actor lacks the required permissions."""

    def __init__(self, decision: Decision) -> None:
        missing = ", ".join(decision.missing)
        super().__init__(f"Missing permission: {missing}" if missing else "Permission denied")
        self.decision = decision


def require_permissions(
    *names: str,
    mode: RequirementMode = RequirementMode.ALL,
    allow_admin: bool = True,
) -> Callable[..., ResolvedPermissions]:
    """Build a dependency that admits only actors satisfying the requirement.

    The dependency returns the actor's resolved permissions so handlers can
    use the actor identity (for example for ownership checks).
    """

    requirement = PermissionRequirement(permissions=names, mode=mode, allow_admin=allow_admin)

    def guard(actor: ResolvedPermissions = Depends(get_current_actor)) -> ResolvedPermissions:
        decision = authorize(actor, requirement)
        if not decision.allowed:
            _logger.info(
                "route_access_denied",
                extra={"user_id": str(actor.user_id), "role": actor.role, "reason": decision.reason},
            )
            raise PermissionDeniedError(decision)
        return actor

    return guard


def require_any_permission(*names: str, allow_admin: bool = True) -> Callable[..., ResolvedPermissions]:
    return require_permissions(*names, mode=RequirementMode.ANY, allow_admin=allow_admin)
