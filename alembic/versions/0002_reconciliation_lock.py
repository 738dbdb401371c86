"""Add the reconciliation lease table."""

from __future__ import annotations
from typing import Union, Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_reconciliation_lock"
down_revision: Union[str, None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Creates the single-row lease used to serialise reconciliation runs."""
    op.create_table(
        "reconciliation_locks",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("holder", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("name", name=op.f("pk_reconciliation_locks")),
    )


def downgrade() -> None:
    """Drops the lease table."""
    op.drop_table("reconciliation_locks")
