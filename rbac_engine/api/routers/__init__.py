"""Router registrations."""

from fastapi import APIRouter

from rbac_engine.api.routers import authorization, health, permissions, roles, users


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(authorization.router, prefix="/api/v1", tags=["authorization"])
    router.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])
    router.include_router(permissions.router, prefix="/api/v1/permissions", tags=["permissions"])
    router.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    return router
