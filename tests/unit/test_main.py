# ruff: noqa: S106  -- test fixtures require hardcoded secret values
"""Composition root smoke tests (in-memory backend, no database)."""

from __future__ import annotations

import importlib
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from src.gateway.middleware.auth import encode_token

SECRET = "composition-root-secret"


@pytest.fixture
def main_module(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SECRET_KEY", SECRET)
    monkeypatch.setenv("PERMISSION_STORE_BACKEND", "memory")
    return importlib.import_module("src.main")


@pytest.mark.unit
class TestBuildApp:
    def test_requires_jwt_secret(self, main_module, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("JWT_SECRET_KEY")
        with pytest.raises(RuntimeError, match="JWT_SECRET_KEY"):
            main_module.build_app()

    def test_rejects_unknown_backend(self, main_module, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PERMISSION_STORE_BACKEND", "redis")
        with pytest.raises(RuntimeError, match="PERMISSION_STORE_BACKEND"):
            main_module.build_app()

    def test_postgres_backend_wires_engine(
        self,
        main_module,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("PERMISSION_STORE_BACKEND", "postgres")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@localhost/test")
        app = main_module.build_app()
        assert app.state.db_engine is not None

    def test_routes_mounted(self, main_module) -> None:
        paths = {r.path for r in main_module.build_app().routes}
        assert "/api/v1/admin/permissions/templates/{role}" in paths
        assert "/api/v1/projects/{project_id}/memberships/me" in paths
        assert "/healthz" in paths

    @pytest.mark.smoke
    def test_end_to_end_memory_backend(self, main_module) -> None:
        app = main_module.build_app()
        project_id, member_id = uuid4(), uuid4()
        app.state.memberships.assign(project_id, member_id, "Contractor")

        admin = {"Authorization": f"Bearer {encode_token(user_id=uuid4(), secret=SECRET, is_admin=True)}"}
        member = {"Authorization": f"Bearer {encode_token(user_id=member_id, secret=SECRET)}"}

        with TestClient(app) as client:
            resp = client.put(
                "/api/v1/admin/permissions/templates/Contractor",
                json={"matrix": {"WIR": {"raise": True}}},
                headers=admin,
            )
            assert resp.status_code == 200

            # Members cannot edit.
            resp = client.put(
                "/api/v1/admin/permissions/templates/Contractor",
                json={"matrix": {}},
                headers=member,
            )
            assert resp.status_code == 403

            check = client.get(
                f"/api/v1/projects/{project_id}/permissions/check",
                params={"module": "WIR", "action": "raise"},
                headers=member,
            )
            assert check.json()["allowed"] is True

            metrics = client.get("/metrics")
            assert "permission_decisions_total" in metrics.text
