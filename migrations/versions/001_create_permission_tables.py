"""Create permission tables and seed role templates.

Tables: permission_templates, permission_project_overrides,
permission_user_overrides, user_role_memberships.

Revision ID: 001_permissions
Revises:
Create Date: 2026-10-19

Rollback: drop all four tables (overrides and seeded templates are lost).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_permissions"
down_revision = None
branch_labels = None
depends_on = None

_UUID = postgresql.UUID(as_uuid=True)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")
_EMPTY_JSON = sa.text("'{}'::jsonb")

# Frozen copy of the registry at the time of this revision.
_MODULES = (
    "WIR",
    "MIR",
    "CS",
    "DPR",
    "MIP",
    "DS",
    "RFC",
    "OBS",
    "DLP",
    "LTR",
    "FDB",
    "MAITRI",
    "DASHBOARD",
)
_ACTIONS = ("view", "raise", "review", "approve", "close")
_ROLES = ("CLIENT", "IH_PMT", "CONTRACTOR", "CONSULTANT", "PMC", "SUPPLIER")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    ]


def upgrade() -> None:
    op.create_table(
        "permission_templates",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("matrix", postgresql.JSONB, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("role", name="uq_permission_templates_role"),
    )

    op.create_table(
        "permission_project_overrides",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column("project_id", _UUID, nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("matrix", postgresql.JSONB, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("project_id", "role", name="uq_permission_project_overrides_scope"),
    )
    op.create_index(
        "ix_permission_project_overrides_project_id",
        "permission_project_overrides",
        ["project_id"],
    )

    op.create_table(
        "permission_user_overrides",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column("project_id", _UUID, nullable=False),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("matrix", postgresql.JSONB, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("project_id", "user_id", name="uq_permission_user_overrides_scope"),
    )
    op.create_index(
        "ix_permission_user_overrides_project_id",
        "permission_user_overrides",
        ["project_id"],
    )

    op.create_table(
        "user_role_memberships",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column("project_id", _UUID, nullable=False),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("valid_from", sa.Date(), nullable=False),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.CheckConstraint(
            "valid_to IS NULL OR valid_to >= valid_from",
            name="ck_user_role_memberships_window",
        ),
    )
    op.create_index(
        "ix_user_role_memberships_project_user",
        "user_role_memberships",
        ["project_id", "user_id"],
    )

    # Seed one all-false template per role so every role has a row to edit.
    all_false = {module: dict.fromkeys(_ACTIONS, False) for module in _MODULES}
    templates = sa.table(
        "permission_templates",
        sa.column("role", sa.String),
        sa.column("matrix", postgresql.JSONB),
        sa.column("version", sa.Integer),
    )
    op.bulk_insert(
        templates,
        [{"role": role, "matrix": all_false, "version": 1} for role in _ROLES],
    )


def downgrade() -> None:
    op.drop_index("ix_user_role_memberships_project_user", table_name="user_role_memberships")
    op.drop_table("user_role_memberships")
    op.drop_index(
        "ix_permission_user_overrides_project_id",
        table_name="permission_user_overrides",
    )
    op.drop_table("permission_user_overrides")
    op.drop_index(
        "ix_permission_project_overrides_project_id",
        table_name="permission_project_overrides",
    )
    op.drop_table("permission_project_overrides")
    op.drop_table("permission_templates")
