"""Member API tests: memberships/me and permission checks."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from src.gateway.api.memberships import create_membership_router
from src.gateway.app import create_app
from src.gateway.middleware.auth import encode_token
from src.gateway.middleware.rbac import AdminGuardMiddleware
from src.permissions.membership import InMemoryMembershipLookup
from src.permissions.resolver import PermissionResolver
from src.permissions.templates import RoleTemplateStore
from src.permissions.user_overrides import UserOverrideStore

SECRET = "test-secret-key-for-member-api"


@pytest.fixture
def client(resolver: PermissionResolver, user_id: UUID) -> TestClient:
    app = create_app(jwt_secret=SECRET, post_auth_middlewares=[AdminGuardMiddleware()])
    app.include_router(create_membership_router(resolver=resolver))
    token = encode_token(user_id=user_id, secret=SECRET)
    return TestClient(app, headers={"Authorization": f"Bearer {token}"})


@pytest.mark.unit
class TestMyMembership:
    @pytest.mark.smoke
    async def test_me_returns_role_and_matrix(
        self,
        client: TestClient,
        templates: RoleTemplateStore,
        memberships: InMemoryMembershipLookup,
        project_id: UUID,
        user_id: UUID,
    ) -> None:
        await templates.put("Consultant", {"DS": {"review": True}})
        memberships.assign(project_id, user_id, "Consultant")

        resp = client.get(f"/api/v1/projects/{project_id}/memberships/me")
        assert resp.status_code == 200
        body = resp.json()
        assert body["project_id"] == str(project_id)
        assert body["role_in_project"] == "Consultant"
        assert body["effective_permissions"]["DS"]["review"] is True
        assert body["effective_permissions"]["LTR"]["approve"] is False

    def test_no_membership_is_404(self, client: TestClient, project_id: UUID) -> None:
        resp = client.get(f"/api/v1/projects/{project_id}/memberships/me")
        assert resp.status_code == 404

    def test_two_roles_is_409(
        self,
        client: TestClient,
        memberships: InMemoryMembershipLookup,
        project_id: UUID,
        user_id: UUID,
    ) -> None:
        memberships.assign(project_id, user_id, "PMC")
        memberships.assign(project_id, user_id, "Client")
        resp = client.get(f"/api/v1/projects/{project_id}/memberships/me")
        assert resp.status_code == 409
        assert resp.json()["error"] == "AMBIGUOUS_ROLE"

    def test_other_users_membership_not_visible(
        self,
        client: TestClient,
        memberships: InMemoryMembershipLookup,
        project_id: UUID,
    ) -> None:
        memberships.assign(project_id, uuid4(), "PMC")
        resp = client.get(f"/api/v1/projects/{project_id}/memberships/me")
        assert resp.status_code == 404


@pytest.mark.unit
class TestPermissionCheck:
    async def test_check_applies_user_deny(
        self,
        client: TestClient,
        templates: RoleTemplateStore,
        user_overrides: UserOverrideStore,
        memberships: InMemoryMembershipLookup,
        project_id: UUID,
        user_id: UUID,
    ) -> None:
        await templates.put("Contractor", {"WIR": {"raise": True, "view": True}})
        await user_overrides.set_cell(project_id, user_id, "WIR", "raise", "deny")
        memberships.assign(project_id, user_id, "Contractor")

        url = f"/api/v1/projects/{project_id}/permissions/check"
        assert client.get(url, params={"module": "WIR", "action": "view"}).json()["allowed"]
        body = client.get(url, params={"module": "WIR", "action": "raise"}).json()
        assert body == {
            "project_id": str(project_id),
            "module": "WIR",
            "action": "raise",
            "allowed": False,
        }

    def test_unknown_module_is_422(self, client: TestClient, project_id: UUID) -> None:
        resp = client.get(
            f"/api/v1/projects/{project_id}/permissions/check",
            params={"module": "XYZ", "action": "view"},
        )
        assert resp.status_code == 422

    def test_missing_query_is_422(self, client: TestClient, project_id: UUID) -> None:
        resp = client.get(f"/api/v1/projects/{project_id}/permissions/check")
        assert resp.status_code == 422
