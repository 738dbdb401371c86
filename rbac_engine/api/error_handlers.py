"""Exception handlers for the FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rbac_engine.api.dependencies import NotAuthenticatedError
from rbac_engine.api.guards import PermissionDeniedError
from rbac_engine.services.authorization import ActorInactiveError, ActorNotFoundError
from rbac_engine.services.bindings import AdminFloorViolationError
from rbac_engine.services.permissions import PermissionNotFoundError
from rbac_engine.services.roles import (
    InvalidPermissionSetError,
    RoleConflictError,
    RoleNotFoundError,
    RoleProtectionError,
    RoleServiceError,
)
from rbac_engine.services.users import (
    SelfDeletionError,
    UserConflictError,
    UserNotFoundError,
    UserServiceError,
)

_STATUS_BY_PROTECTION_REASON = {"role-in-use": 409, AdminFloorViolationError.reason: 409}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(
            status_code=401,
            content={"detail": str(exc), "reason": "not-authenticated"},
            headers={"WWW-Authenticate": "X-Actor-Id"},
        )

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied_handler(request: Request, exc: PermissionDeniedError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(
            status_code=403,
            content={
                "detail": str(exc),
                "reason": exc.decision.reason,
                "missing": list(exc.decision.missing),
            },
        )

    @app.exception_handler(RoleNotFoundError)
    @app.exception_handler(UserNotFoundError)
    @app.exception_handler(PermissionNotFoundError)
    @app.exception_handler(ActorNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ActorInactiveError)
    async def actor_inactive_handler(request: Request, exc: ActorInactiveError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=403, content={"detail": str(exc), "reason": "user-inactive"})

    @app.exception_handler(RoleConflictError)
    @app.exception_handler(UserConflictError)
    async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(RoleProtectionError)
    async def role_protection_handler(request: Request, exc: RoleProtectionError) -> JSONResponse:  # noqa: WPS430
        content = {"detail": str(exc), "reason": exc.reason}
        if exc.user_count is not None:
            content["user_count"] = exc.user_count
        return JSONResponse(status_code=_STATUS_BY_PROTECTION_REASON.get(exc.reason, 403), content=content)

    @app.exception_handler(AdminFloorViolationError)
    async def admin_floor_handler(request: Request, exc: AdminFloorViolationError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=409, content={"detail": str(exc), "reason": exc.reason})

    @app.exception_handler(InvalidPermissionSetError)
    async def invalid_permission_set_handler(  # noqa: WPS430
        request: Request, exc: InvalidPermissionSetError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc), "reason": exc.reason})

    @app.exception_handler(SelfDeletionError)
    async def self_deletion_handler(request: Request, exc: SelfDeletionError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": str(exc), "reason": exc.reason})

    @app.exception_handler(RoleServiceError)
    @app.exception_handler(UserServiceError)
    async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": str(exc)})
