"""Permission store ports - persistence contracts for the three matrix layers.

Hard dependency of PermissionResolver.
Day-1 implementation: in-memory stores (src.permissions.*).
Real implementation: PostgreSQL via SQLAlchemy (Pg*Store in the same modules).

Contract shared by every store:
- Unknown module/action/role keys raise ValidationError.
- Writes replace the stored value for the scope key atomically.
- expected_version, when given, must equal the stored version (0 when no
  row exists) or ConflictError is raised.
- Mutation calls arrive pre-authorized; stores do not check the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import date
    from uuid import UUID

    from src.permissions.matrix import AllowMatrix, DenyMatrix, DenyValue
    from src.permissions.records import (
        DenyRecord,
        OverrideRecord,
        ProjectMember,
        TemplateRecord,
    )
    from src.permissions.registry import Action, ModuleCode, RoleKey


class RoleTemplateStorePort(ABC):
    """Port: one allow-matrix per role. Never deleted."""

    @abstractmethod
    async def get(self, role: RoleKey | str) -> TemplateRecord:
        """Return the stored template, or an all-false default (version 0)."""

    @abstractmethod
    async def list_all(self) -> list[TemplateRecord]:
        """Return one record per role, defaults filled in, in RoleKey order."""

    @abstractmethod
    async def put(
        self,
        role: RoleKey | str,
        matrix: AllowMatrix,
        *,
        expected_version: int | None = None,
    ) -> TemplateRecord:
        """Replace the template for a role."""


class ProjectOverrideStorePort(ABC):
    """Port: zero-or-one allow-matrix per (project, role)."""

    @abstractmethod
    async def get(self, project_id: UUID, role: RoleKey | str) -> OverrideRecord | None:
        """Return the override, or None when the pair has no customization."""

    @abstractmethod
    async def put(
        self,
        project_id: UUID,
        role: RoleKey | str,
        matrix: AllowMatrix,
        *,
        expected_version: int | None = None,
    ) -> OverrideRecord:
        """Create or fully replace the override (never cell-merged)."""

    @abstractmethod
    async def reset_to_template(self, project_id: UUID, role: RoleKey | str) -> AllowMatrix:
        """Delete the override and return the role's current template matrix."""


class UserOverrideStorePort(ABC):
    """Port: sparse deny-only matrix per (project, user)."""

    @abstractmethod
    async def get(self, project_id: UUID, user_id: UUID) -> DenyRecord:
        """Return the deny record (empty matrix, version 0 when no row)."""

    @abstractmethod
    async def set_cell(
        self,
        project_id: UUID,
        user_id: UUID,
        module: ModuleCode | str,
        action: Action | str,
        value: DenyValue | str,
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        """Deny one cell or clear it back to inherit."""

    @abstractmethod
    async def replace(
        self,
        project_id: UUID,
        user_id: UUID,
        matrix: DenyMatrix,
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        """Replace the whole deny matrix."""

    @abstractmethod
    async def reset(self, project_id: UUID, user_id: UUID) -> None:
        """Delete the row (no denials ever recorded)."""


class MembershipLookupPort(ABC):
    """Port: read side of project role assignments (owned elsewhere)."""

    @abstractmethod
    async def roles_for(self, project_id: UUID, user_id: UUID, *, on: date) -> frozenset[RoleKey]:
        """Return the roles a user actively holds in a project on a date."""

    @abstractmethod
    async def members_of(self, project_id: UUID, *, on: date) -> list[ProjectMember]:
        """Return every user with at least one active role on a date."""
