"""Association table between roles and permissions."""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from rbac_engine.models.base import Base
from rbac_engine.models.types import GUID


class RolePermission(Base):
    """Join table for the many-to-many relation; the composite key forbids duplicates."""

    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    permission_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("permissions.id", ondelete="RESTRICT"),
        primary_key=True,
    )
