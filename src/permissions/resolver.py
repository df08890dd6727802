"""Permission resolver: the single allow/deny decision.

Combines the three matrix layers plus the fixed LTR rule:

    1. validate module, action, role           -> ValidationError
    2. LTR review/approve                      -> False (no store read)
    3. base = project override if present, else role template
       (full replacement: the override is never merged with the template)
    4. user deny present for the cell          -> False, else base

The three store reads have no ordering dependency and are issued
concurrently. The resolver writes nothing; it only reads stores and
records decision metrics.

Role lookup for a member goes through MembershipLookupPort. A user with no
active membership is a caller bug (NotFoundError), and a user with several
active roles is refused (AmbiguousRoleError) rather than guessed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from src.permissions.records import EffectiveBase, MemberPermissions
from src.permissions.registry import (
    Action,
    ModuleCode,
    RoleKey,
    is_locked_cell,
    parse_action,
    parse_module,
    parse_role,
)
from src.shared.errors import AmbiguousRoleError, NotFoundError

if TYPE_CHECKING:
    from uuid import UUID

    from src.permissions.matrix import AllowMatrix
    from src.permissions.metrics import PermissionMetrics
    from src.ports.permission_store_port import (
        MembershipLookupPort,
        ProjectOverrideStorePort,
        RoleTemplateStorePort,
        UserOverrideStorePort,
    )

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Resolve effective permissions over template, override and deny layers."""

    def __init__(
        self,
        *,
        templates: RoleTemplateStorePort,
        overrides: ProjectOverrideStorePort,
        user_overrides: UserOverrideStorePort,
        memberships: MembershipLookupPort,
        metrics: PermissionMetrics | None = None,
    ) -> None:
        self._templates = templates
        self._overrides = overrides
        self._user_overrides = user_overrides
        self._memberships = memberships
        self._metrics = metrics

    async def resolve(
        self,
        module: ModuleCode | str,
        action: Action | str,
        role: RoleKey | str,
        project_id: UUID,
        user_id: UUID,
    ) -> bool:
        """Decide whether a user acting in `role` may perform `action` in `module`."""
        mod = parse_module(module)
        act = parse_action(action)
        key = parse_role(role)

        if is_locked_cell(mod, act):
            self._record(mod, act, "locked")
            return False

        override, template, deny = await asyncio.gather(
            self._overrides.get(project_id, key),
            self._templates.get(key),
            self._user_overrides.get(project_id, user_id),
        )
        base = (override.matrix if override is not None else template.matrix).is_allowed(mod, act)

        if deny.matrix.is_denied(mod, act):
            outcome = "user_deny"
            allowed = False
        else:
            outcome = "allow" if base else "deny"
            allowed = base

        logger.debug(
            "Permission %s.%s for user=%s role=%s project=%s: %s (base from %s)",
            mod.value,
            act.value,
            user_id,
            key.value,
            project_id,
            outcome,
            "override" if override is not None else "template",
        )
        self._record(mod, act, outcome)
        return allowed

    async def effective_base(self, project_id: UUID, role: RoleKey | str) -> EffectiveBase:
        """Return the allow-matrix a (project, role) pair starts from."""
        key = parse_role(role)
        override, template = await asyncio.gather(
            self._overrides.get(project_id, key),
            self._templates.get(key),
        )
        if override is not None:
            return EffectiveBase(
                source="override",
                project_id=project_id,
                role=key,
                matrix=override.matrix,
                version=override.version,
                updated_at=override.updated_at,
            )
        return EffectiveBase(
            source="template",
            project_id=project_id,
            role=key,
            matrix=template.matrix,
            version=0,
            updated_at=template.updated_at,
        )

    async def resolve_effective_matrix(
        self,
        role: RoleKey | str,
        project_id: UUID,
        user_id: UUID,
    ) -> AllowMatrix:
        """Resolve all 65 cells at once (editor starting state)."""
        key = parse_role(role)
        base, deny = await asyncio.gather(
            self.effective_base(project_id, key),
            self._user_overrides.get(project_id, user_id),
        )
        # AllowMatrix never grants locked cells, so step 2 holds here too.
        return deny.matrix.apply(base.matrix)

    async def role_for(
        self,
        project_id: UUID,
        user_id: UUID,
        *,
        on: date | None = None,
    ) -> RoleKey:
        """Return the single active role a user holds in a project."""
        day = on or datetime.now(UTC).date()
        roles = await self._memberships.roles_for(project_id, user_id, on=day)
        if not roles:
            raise NotFoundError("Membership", f"user {user_id} in project {project_id}")
        if len(roles) > 1:
            raise AmbiguousRoleError(project_id, user_id, [r.value for r in roles])
        (role,) = roles
        return role

    async def resolve_for_member(
        self,
        module: ModuleCode | str,
        action: Action | str,
        project_id: UUID,
        user_id: UUID,
    ) -> bool:
        """resolve() with the role taken from the user's project membership."""
        mod = parse_module(module)
        act = parse_action(action)
        role = await self.role_for(project_id, user_id)
        return await self.resolve(mod, act, role, project_id, user_id)

    async def effective_for_member(self, project_id: UUID, user_id: UUID) -> MemberPermissions:
        role = await self.role_for(project_id, user_id)
        matrix = await self.resolve_effective_matrix(role, project_id, user_id)
        return MemberPermissions(project_id=project_id, user_id=user_id, role=role, matrix=matrix)

    def _record(self, module: ModuleCode, action: Action, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_decision(module=module.value, action=action.value, outcome=outcome)
