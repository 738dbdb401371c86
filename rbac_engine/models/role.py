"""Role model for grouping permissions."""

from __future__ import annotations

import uuid
from typing import List

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rbac_engine.models.base import Base, TimestampMixin
from rbac_engine.models.types import GUID

ROLE_NAME_PATTERN = r"^[a-z_]+$"


class Role(TimestampMixin, Base):
    """Named set of permissions bound to users by name."""

    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("name", name="uq_roles_name"),
        Index("ix_roles_active_name", "is_active", "name"),
        Index("ix_roles_priority", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(length=120), nullable=False)
    display_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    description: Mapped[str] = mapped_column(String(length=512), nullable=False, default="")
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)

    permissions: Mapped[List["Permission"]] = relationship(
        "Permission",
        secondary="role_permissions",
        back_populates="roles",
        order_by="Permission.name",
    )
    users: Mapped[List["User"]] = relationship("User", back_populates="role_ref")

    @property
    def permission_names(self) -> List[str]:
        return sorted(permission.name for permission in self.permissions)
