"""Lease row guarding reconciliation runs on databases without advisory locks."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from rbac_engine.models.base import Base


class ReconciliationLock(Base):
    """At most one row per lock name; the primary key makes acquisition atomic."""

    __tablename__ = "reconciliation_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
