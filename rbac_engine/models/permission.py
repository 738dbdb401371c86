"""Permission model representing atomic ``resource.action`` capabilities."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rbac_engine.models.base import Base, TimestampMixin
from rbac_engine.models.types import GUID, JSONType

PERMISSION_NAME_PATTERN = r"^[a-z]+(\.[a-z-]+)+$"


class PermissionAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    ASSIGN = "assign"
    GENERATE = "generate"
    DOWNLOAD = "download"
    SEND = "send"
    UPLOAD = "upload"
    EXPORT = "export"


class PermissionCategory(str, Enum):
    USER_MANAGEMENT = "user-management"
    TESTING = "testing"
    PROJECTS = "projects"
    BILLING = "billing"
    FILES = "files"
    REPORTS = "reports"
    SYSTEM = "system"
    OTHER = "other"


class Permission(TimestampMixin, Base):
    """Atomic permission identified by its dotted name."""

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("name", name="uq_permissions_name"),
        Index("ix_permissions_resource_action", "resource", "action"),
        Index("ix_permissions_active_resource", "is_active", "resource"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    resource: Mapped[str] = mapped_column(String(length=255), nullable=False)
    action: Mapped[str] = mapped_column(String(length=32), nullable=False)
    description: Mapped[str] = mapped_column(String(length=1024), nullable=False, default="")
    category: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default=PermissionCategory.OTHER.value,
    )
    tags: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    roles: Mapped[List["Role"]] = relationship(
        "Role",
        secondary="role_permissions",
        back_populates="permissions",
    )
