"""SQLAlchemy ORM models for the permission service.

Maps to migration DDL in migrations/versions/:
  001_create_permission_tables.py -> PermissionTemplate,
                                     PermissionProjectOverride,
                                     PermissionUserOverride,
                                     UserRoleMembership

Matrices are stored as JSONB in their wire form. Roles are stored by
RoleKey member name ("IH_PMT"), not by wire value ("IH-PMT").

These models live in the Infrastructure layer; the resolver only sees
them through the store ports.
"""

from __future__ import annotations

import uuid as _uuid  # noqa: TC003 -- SQLAlchemy resolves Mapped[] annotations at runtime
from datetime import date, datetime  # noqa: TC003
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_UUID = postgresql.UUID(as_uuid=True)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")
_EMPTY_JSON = sa.text("'{}'::jsonb")


class Base(DeclarativeBase):
    """Declarative base for all permission ORM models."""


class PermissionTemplate(Base):
    """Default allow-matrix for a role. One row per role, never deleted."""

    __tablename__ = "permission_templates"

    id: Mapped[_uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        server_default=_GEN_UUID,
    )
    role: Mapped[str] = mapped_column(sa.String(32), nullable=False, unique=True)
    matrix: Mapped[dict[str, Any]] = mapped_column(
        postgresql.JSONB,
        nullable=False,
        server_default=_EMPTY_JSON,
    )
    version: Mapped[int] = mapped_column(
        sa.Integer(),
        nullable=False,
        server_default=sa.text("1"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )


class PermissionProjectOverride(Base):
    """Per-(project, role) allow-matrix that replaces the template."""

    __tablename__ = "permission_project_overrides"

    id: Mapped[_uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        server_default=_GEN_UUID,
    )
    project_id: Mapped[_uuid.UUID] = mapped_column(_UUID, nullable=False)
    role: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    matrix: Mapped[dict[str, Any]] = mapped_column(postgresql.JSONB, nullable=False)
    version: Mapped[int] = mapped_column(
        sa.Integer(),
        nullable=False,
        server_default=sa.text("1"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    # Set by reset; the row is kept so versions keep increasing.
    deleted_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.UniqueConstraint("project_id", "role", name="uq_permission_project_overrides_scope"),
        sa.Index("ix_permission_project_overrides_project_id", "project_id"),
    )


class PermissionUserOverride(Base):
    """Per-(project, user) sparse deny matrix."""

    __tablename__ = "permission_user_overrides"

    id: Mapped[_uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        server_default=_GEN_UUID,
    )
    project_id: Mapped[_uuid.UUID] = mapped_column(_UUID, nullable=False)
    user_id: Mapped[_uuid.UUID] = mapped_column(_UUID, nullable=False)
    matrix: Mapped[dict[str, Any]] = mapped_column(
        postgresql.JSONB,
        nullable=False,
        server_default=_EMPTY_JSON,
    )
    version: Mapped[int] = mapped_column(
        sa.Integer(),
        nullable=False,
        server_default=sa.text("1"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    # Set by reset; the row is kept so versions keep increasing.
    deleted_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.UniqueConstraint("project_id", "user_id", name="uq_permission_user_overrides_scope"),
        sa.Index("ix_permission_user_overrides_project_id", "project_id"),
    )


class UserRoleMembership(Base):
    """Role held by a user in a project over a validity window.

    Written by the role-assignment bookkeeping; read-only here.
    """

    __tablename__ = "user_role_memberships"

    id: Mapped[_uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        server_default=_GEN_UUID,
    )
    project_id: Mapped[_uuid.UUID] = mapped_column(_UUID, nullable=False)
    user_id: Mapped[_uuid.UUID] = mapped_column(_UUID, nullable=False)
    role: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    valid_from: Mapped[date] = mapped_column(sa.Date(), nullable=False)
    valid_to: Mapped[date | None] = mapped_column(sa.Date(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )

    __table_args__ = (
        sa.CheckConstraint(
            "valid_to IS NULL OR valid_to >= valid_from",
            name="ck_user_role_memberships_window",
        ),
        sa.Index("ix_user_role_memberships_project_user", "project_id", "user_id"),
    )
