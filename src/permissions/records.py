"""Stored records and resolver results.

Records pair a matrix value with its scope key and write metadata.
`version` is 0 for "no row stored" and increments on every write; it is
the token callers pass back as expected_version for optimistic checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from src.permissions.matrix import AllowMatrix, DenyMatrix

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from src.permissions.registry import RoleKey


@dataclass(frozen=True)
class TemplateRecord:
    role: RoleKey
    matrix: AllowMatrix = field(default_factory=AllowMatrix.empty)
    updated_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class OverrideRecord:
    project_id: UUID
    role: RoleKey
    matrix: AllowMatrix
    updated_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class DenyRecord:
    project_id: UUID
    user_id: UUID
    matrix: DenyMatrix = field(default_factory=DenyMatrix.empty)
    updated_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class EffectiveBase:
    """The allow-matrix a (project, role) pair starts from, and where it came from.

    updated_at is when that matrix was last saved (override or template).
    """

    source: Literal["override", "template"]
    project_id: UUID
    role: RoleKey
    matrix: AllowMatrix
    version: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class MemberPermissions:
    """A member's role in a project and their fully resolved matrix."""

    project_id: UUID
    user_id: UUID
    role: RoleKey
    matrix: AllowMatrix


@dataclass(frozen=True)
class ProjectMember:
    user_id: UUID
    roles: frozenset[RoleKey]
