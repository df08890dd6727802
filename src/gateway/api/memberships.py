"""Member API -- the caller's own permissions in a project.

- GET /api/v1/projects/{project_id}/memberships/me
- GET /api/v1/projects/{project_id}/permissions/check?module=&action=

The role is always taken from the caller's active membership, never from
the request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003 - needed at runtime by FastAPI path params

from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.permissions.registry import parse_action, parse_module

if TYPE_CHECKING:
    from src.permissions.resolver import PermissionResolver


class MyMembershipResponse(BaseModel):
    project_id: str
    role_in_project: str
    effective_permissions: dict[str, dict[str, bool]]


class PermissionCheckResponse(BaseModel):
    project_id: str
    module: str
    action: str
    allowed: bool


def create_membership_router(*, resolver: PermissionResolver) -> APIRouter:
    """Create member-facing permission router."""
    router = APIRouter(prefix="/api/v1/projects", tags=["memberships"])

    @router.get("/{project_id}/memberships/me", response_model=MyMembershipResponse)
    async def my_membership(project_id: UUID, request: Request) -> MyMembershipResponse:
        user_id: UUID = request.state.user_id
        member = await resolver.effective_for_member(project_id, user_id)
        return MyMembershipResponse(
            project_id=str(project_id),
            role_in_project=member.role.value,
            effective_permissions=member.matrix.to_wire(),
        )

    @router.get("/{project_id}/permissions/check", response_model=PermissionCheckResponse)
    async def check_permission(
        project_id: UUID,
        module: str,
        action: str,
        request: Request,
    ) -> PermissionCheckResponse:
        user_id: UUID = request.state.user_id
        mod = parse_module(module)
        act = parse_action(action)
        allowed = await resolver.resolve_for_member(mod, act, project_id, user_id)
        return PermissionCheckResponse(
            project_id=str(project_id),
            module=mod.value,
            action=act.value,
            allowed=allowed,
        )

    return router
