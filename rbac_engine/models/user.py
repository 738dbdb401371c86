"""User model carrying the user-role binding."""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rbac_engine.models.base import Base, TimestampMixin
from rbac_engine.models.types import GUID


class User(TimestampMixin, Base):
    """Application actor bound to exactly one role.

    ``role`` is the denormalized role name used for filtering, ``role_id`` the
    direct reference used during permission resolution. Both are written
    together by ``UserService.assign_role``.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("ix_users_role", "role"),
        Index("ix_users_role_id", "role_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    role: Mapped[str] = mapped_column(String(length=120), nullable=False)
    role_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    role_ref: Mapped[Optional["Role"]] = relationship("Role", back_populates="users")
