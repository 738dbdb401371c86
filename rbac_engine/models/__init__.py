"""SQLAlchemy ORM models for the RBAC engine."""

from rbac_engine.models.base import Base  # noqa: F401
from rbac_engine.models.permission import Permission, PermissionAction, PermissionCategory  # noqa: F401
from rbac_engine.models.role import Role  # noqa: F401
from rbac_engine.models.role_permission import RolePermission  # noqa: F401
from rbac_engine.models.user import User  # noqa: F401
from rbac_engine.models.reconciliation_lock import ReconciliationLock  # noqa: F401
