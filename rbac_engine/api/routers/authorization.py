"""Authorization API endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rbac_engine.api.dependencies import get_authorization_service
from rbac_engine.schemas.authorization import AuthorizationRequest, AuthorizationResponse
from rbac_engine.services.authorization import AuthorizationService
from rbac_engine.services.decision import PermissionRequirement

router = APIRouter()


@router.post(
    "/authorize",
    response_model=AuthorizationResponse,
)
def authorize(
    payload: AuthorizationRequest,
    service: AuthorizationService = Depends(get_authorization_service),
) -> AuthorizationResponse:
    requirement = PermissionRequirement(
        permissions=tuple(payload.permissions),
        mode=payload.mode,
        allow_admin=payload.allow_admin,
    )
    decision = service.check(
        payload.user_id,
        requirement,
        owner_id=payload.owner_id,
        enforce_ownership="owner_id" in payload.model_fields_set,
    )
    return AuthorizationResponse(allowed=decision.allowed, reason=decision.reason, missing=list(decision.missing))
