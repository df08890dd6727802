"""Add deleted_at to override tables.

Reset no longer deletes override rows: it stamps deleted_at and keeps the
row so the next save continues the version sequence instead of restarting
at 1. Live rows have deleted_at IS NULL.

Revision ID: 002_override_tombstones
Revises: 001_permissions
Create Date: 2026-10-19

Rollback: alembic downgrade -1 (tombstoned rows are purged first).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "002_override_tombstones"
down_revision = "001_permissions"
branch_labels = None
depends_on = None

_TABLES = ("permission_project_overrides", "permission_user_overrides")


def upgrade() -> None:
    for table in _TABLES:
        op.add_column(
            table,
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        )


def downgrade() -> None:
    for table in _TABLES:
        op.execute(sa.text(f"DELETE FROM {table} WHERE deleted_at IS NOT NULL"))  # noqa: S608
        op.drop_column(table, "deleted_at")
