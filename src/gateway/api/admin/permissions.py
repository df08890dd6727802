"""Permission Admin API -- edit templates, project overrides and user denials.

- GET/PUT   /api/v1/admin/permissions/templates[/{role}]
- GET/PUT   /api/v1/admin/permissions/projects/{project_id}/overrides/{role}
- POST      .../overrides/{role}/reset
- GET/PUT/PATCH /api/v1/admin/permissions/projects/{project_id}/users/{user_id}/overrides
- POST      .../users/{user_id}/overrides/reset
- GET       .../users/{user_id}/effective[?role=]
- GET       .../projects/{project_id}/members
- GET       /api/v1/admin/permissions/modules

Admin privilege is enforced by the gateway guard before these handlers run.
Domain errors propagate to the app's exception handlers.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID  # noqa: TC003 - needed at runtime by FastAPI path params

from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.permissions.matrix import AllowMatrix, DenyMatrix
from src.permissions.registry import MODULE_LABELS, Action, ModuleCode, RoleKey, parse_role

if TYPE_CHECKING:
    from src.permissions.records import DenyRecord, EffectiveBase, OverrideRecord, TemplateRecord
    from src.permissions.resolver import PermissionResolver
    from src.ports.permission_store_port import (
        MembershipLookupPort,
        ProjectOverrideStorePort,
        RoleTemplateStorePort,
        UserOverrideStorePort,
    )

logger = logging.getLogger(__name__)


# -- Request/Response models --


class AllowMatrixBody(BaseModel):
    matrix: dict[str, Any]
    expected_version: int | None = None


class DenyMatrixBody(BaseModel):
    matrix: dict[str, Any]
    expected_version: int | None = None


class CellOverrideBody(BaseModel):
    module: str
    action: str
    value: str
    expected_version: int | None = None


class TemplateResponse(BaseModel):
    role: str
    matrix: dict[str, dict[str, bool]]
    version: int
    updated_at: datetime | None = None


class TemplateListResponse(BaseModel):
    templates: list[TemplateResponse]


class ProjectOverrideResponse(BaseModel):
    source: Literal["override", "template"]
    project_id: str
    role: str
    matrix: dict[str, dict[str, bool]]
    version: int
    updated_at: datetime | None = None


class UserOverrideResponse(BaseModel):
    project_id: str
    user_id: str
    matrix: dict[str, dict[str, str]]
    version: int
    updated_at: datetime | None = None


class UserOverrideResetResponse(BaseModel):
    ok: bool
    project_id: str
    user_id: str


class EffectiveMatrixResponse(BaseModel):
    project_id: str
    user_id: str
    role: str
    matrix: dict[str, dict[str, bool]]


class MemberResponse(BaseModel):
    user_id: str
    roles: list[str]


class MemberListResponse(BaseModel):
    project_id: str
    members: list[MemberResponse]
    total: int


class ModuleEntry(BaseModel):
    code: str
    label: str


class CatalogueResponse(BaseModel):
    modules: list[ModuleEntry]
    actions: list[str]
    roles: list[str]


def _template_response(record: TemplateRecord) -> TemplateResponse:
    return TemplateResponse(
        role=record.role.value,
        matrix=record.matrix.to_wire(),
        version=record.version,
        updated_at=record.updated_at,
    )


def _override_response(record: OverrideRecord) -> ProjectOverrideResponse:
    return ProjectOverrideResponse(
        source="override",
        project_id=str(record.project_id),
        role=record.role.value,
        matrix=record.matrix.to_wire(),
        version=record.version,
        updated_at=record.updated_at,
    )


def _base_response(base: EffectiveBase) -> ProjectOverrideResponse:
    return ProjectOverrideResponse(
        source=base.source,
        project_id=str(base.project_id),
        role=base.role.value,
        matrix=base.matrix.to_wire(),
        version=base.version,
        updated_at=base.updated_at,
    )


def _deny_response(record: DenyRecord) -> UserOverrideResponse:
    return UserOverrideResponse(
        project_id=str(record.project_id),
        user_id=str(record.user_id),
        matrix=record.matrix.to_wire(),
        version=record.version,
        updated_at=record.updated_at,
    )


def create_permissions_admin_router(
    *,
    templates: RoleTemplateStorePort,
    overrides: ProjectOverrideStorePort,
    user_overrides: UserOverrideStorePort,
    resolver: PermissionResolver,
    memberships: MembershipLookupPort,
) -> APIRouter:
    """Create permission admin API router."""
    router = APIRouter(prefix="/api/v1/admin/permissions", tags=["permissions-admin"])

    # -- Registry catalogue --

    @router.get("/modules", response_model=CatalogueResponse)
    async def catalogue() -> CatalogueResponse:
        """List modules (with display labels), actions and roles."""
        return CatalogueResponse(
            modules=[ModuleEntry(code=m.value, label=MODULE_LABELS[m]) for m in ModuleCode],
            actions=[a.value for a in Action],
            roles=[r.value for r in RoleKey],
        )

    # -- Role templates --

    @router.get("/templates", response_model=TemplateListResponse)
    async def list_templates() -> TemplateListResponse:
        records = await templates.list_all()
        return TemplateListResponse(templates=[_template_response(r) for r in records])

    @router.get("/templates/{role}", response_model=TemplateResponse)
    async def get_template(role: str) -> TemplateResponse:
        return _template_response(await templates.get(role))

    @router.put("/templates/{role}", response_model=TemplateResponse)
    async def put_template(role: str, body: AllowMatrixBody, request: Request) -> TemplateResponse:
        """Replace a role's default matrix. Locked cells are stored as false."""
        record = await templates.put(
            role,
            AllowMatrix.from_wire(body.matrix),
            expected_version=body.expected_version,
        )
        logger.info(
            "Template replaced by admin: role=%s admin=%s version=%d",
            record.role.value,
            request.state.user_id,
            record.version,
        )
        return _template_response(record)

    # -- Project overrides --

    @router.get("/projects/{project_id}/overrides/{role}", response_model=ProjectOverrideResponse)
    async def get_project_override(project_id: UUID, role: str) -> ProjectOverrideResponse:
        """Return the override if one exists, else the role template."""
        return _base_response(await resolver.effective_base(project_id, role))

    @router.put("/projects/{project_id}/overrides/{role}", response_model=ProjectOverrideResponse)
    async def put_project_override(
        project_id: UUID,
        role: str,
        body: AllowMatrixBody,
        request: Request,
    ) -> ProjectOverrideResponse:
        """Create or fully replace a project's matrix for one role."""
        record = await overrides.put(
            project_id,
            role,
            AllowMatrix.from_wire(body.matrix),
            expected_version=body.expected_version,
        )
        logger.info(
            "Project override saved by admin: project=%s role=%s admin=%s",
            project_id,
            record.role.value,
            request.state.user_id,
        )
        return _override_response(record)

    @router.post(
        "/projects/{project_id}/overrides/{role}/reset",
        response_model=ProjectOverrideResponse,
    )
    async def reset_project_override(project_id: UUID, role: str) -> ProjectOverrideResponse:
        """Drop the override; the response is the template now in effect."""
        key = parse_role(role)
        matrix = await overrides.reset_to_template(project_id, key)
        template = await templates.get(key)
        return ProjectOverrideResponse(
            source="template",
            project_id=str(project_id),
            role=key.value,
            matrix=matrix.to_wire(),
            version=0,
            updated_at=template.updated_at,
        )

    # -- User overrides (deny-only) --

    @router.get(
        "/projects/{project_id}/users/{user_id}/overrides",
        response_model=UserOverrideResponse,
    )
    async def get_user_override(project_id: UUID, user_id: UUID) -> UserOverrideResponse:
        return _deny_response(await user_overrides.get(project_id, user_id))

    @router.put(
        "/projects/{project_id}/users/{user_id}/overrides",
        response_model=UserOverrideResponse,
    )
    async def replace_user_override(
        project_id: UUID,
        user_id: UUID,
        body: DenyMatrixBody,
    ) -> UserOverrideResponse:
        record = await user_overrides.replace(
            project_id,
            user_id,
            DenyMatrix.from_wire(body.matrix),
            expected_version=body.expected_version,
        )
        return _deny_response(record)

    @router.patch(
        "/projects/{project_id}/users/{user_id}/overrides",
        response_model=UserOverrideResponse,
    )
    async def set_user_override_cell(
        project_id: UUID,
        user_id: UUID,
        body: CellOverrideBody,
    ) -> UserOverrideResponse:
        """Deny one cell ("deny") or clear it ("inherit")."""
        record = await user_overrides.set_cell(
            project_id,
            user_id,
            body.module,
            body.action,
            body.value,
            expected_version=body.expected_version,
        )
        return _deny_response(record)

    @router.post(
        "/projects/{project_id}/users/{user_id}/overrides/reset",
        response_model=UserOverrideResetResponse,
    )
    async def reset_user_override(project_id: UUID, user_id: UUID) -> UserOverrideResetResponse:
        await user_overrides.reset(project_id, user_id)
        return UserOverrideResetResponse(ok=True, project_id=str(project_id), user_id=str(user_id))

    # -- Resolution views --

    @router.get(
        "/projects/{project_id}/users/{user_id}/effective",
        response_model=EffectiveMatrixResponse,
    )
    async def effective_matrix(
        project_id: UUID,
        user_id: UUID,
        role: str | None = None,
    ) -> EffectiveMatrixResponse:
        """Resolved matrix for a user; role defaults to their project membership."""
        if role is None:
            member = await resolver.effective_for_member(project_id, user_id)
            key, matrix = member.role, member.matrix
        else:
            key = parse_role(role)
            matrix = await resolver.resolve_effective_matrix(key, project_id, user_id)
        return EffectiveMatrixResponse(
            project_id=str(project_id),
            user_id=str(user_id),
            role=key.value,
            matrix=matrix.to_wire(),
        )

    @router.get("/projects/{project_id}/members", response_model=MemberListResponse)
    async def list_members(project_id: UUID, on: date | None = None) -> MemberListResponse:
        day = on or datetime.now(UTC).date()
        members = await memberships.members_of(project_id, on=day)
        return MemberListResponse(
            project_id=str(project_id),
            members=[
                MemberResponse(
                    user_id=str(m.user_id),
                    roles=sorted(r.value for r in m.roles),
                )
                for m in members
            ],
            total=len(members),
        )

    return router
