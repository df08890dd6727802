# ruff: noqa: S106  -- test fixtures require hardcoded secret values
"""FastAPI app factory tests: exempt paths, auth, trace id, error mapping."""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry, Counter
from sqlalchemy.exc import OperationalError

from src.gateway.app import create_app
from src.gateway.middleware.auth import encode_token
from src.gateway.middleware.rbac import AdminGuardMiddleware
from src.shared.errors import (
    AmbiguousRoleError,
    ConflictError,
    NotFoundError,
    PmsError,
    ServiceUnavailableError,
    ValidationError,
)
from src.shared.trace_context import TRACE_HEADER, get_trace_id

SECRET = "test-secret-key-for-unit-tests-only"


def _raising_router() -> APIRouter:
    router = APIRouter(prefix="/api/v1/boom")
    errors: dict[str, Exception] = {
        "validation": ValidationError("bad key", field="module"),
        "not-found": NotFoundError("Membership", "x"),
        "conflict": ConflictError("stale"),
        "ambiguous": AmbiguousRoleError("p", "u", ["PMC", "Client"]),
        "unavailable": ServiceUnavailableError("postgres"),
        "generic": PmsError("unexpected"),
        "db-down": OperationalError("SELECT 1", {}, Exception("connection refused")),
    }

    @router.get("/{kind}")
    async def boom(kind: str) -> dict[str, str]:
        raise errors[kind]

    @router.get("/trace/echo")
    async def echo_trace() -> dict[str, str]:
        return {"trace_id": get_trace_id()}

    return router


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def app(registry: CollectorRegistry) -> FastAPI:
    application = create_app(
        jwt_secret=SECRET,
        post_auth_middlewares=[AdminGuardMiddleware()],
        metrics_registry=registry,
    )
    application.include_router(_raising_router())
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    token = encode_token(user_id=uuid4(), secret=SECRET)
    return TestClient(app, headers={"Authorization": f"Bearer {token}"})


@pytest.mark.unit
class TestAppFactory:
    def test_requires_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("JWT_SECRET_KEY", raising=False)
        with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
            create_app()

    def test_secret_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("JWT_SECRET_KEY", "from-env")
        assert create_app().state.jwt_secret == "from-env"

    @pytest.mark.smoke
    def test_healthz_exempt_from_auth(self, app: FastAPI) -> None:
        resp = TestClient(app).get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_openapi_exempt_from_auth(self, app: FastAPI) -> None:
        assert TestClient(app).get("/openapi.json").status_code == 200

    def test_metrics_served_from_given_registry(
        self,
        app: FastAPI,
        registry: CollectorRegistry,
    ) -> None:
        Counter("sample_total", "sample counter", registry=registry).inc()
        resp = TestClient(app).get("/metrics")
        assert resp.status_code == 200
        assert "sample_total" in resp.text

    def test_unknown_path_is_404_not_401(self, app: FastAPI) -> None:
        resp = TestClient(app).get("/api/v1/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"


@pytest.mark.unit
class TestAuthentication:
    def test_missing_token_401(self, app: FastAPI) -> None:
        resp = TestClient(app).get("/api/v1/boom/trace/echo")
        assert resp.status_code == 401
        assert resp.json()["error"] == "AUTH_FAILED"

    def test_malformed_header_401(self, app: FastAPI) -> None:
        resp = TestClient(app).get(
            "/api/v1/boom/trace/echo",
            headers={"Authorization": "Token abc"},
        )
        assert resp.status_code == 401

    def test_bad_signature_401(self, app: FastAPI) -> None:
        token = encode_token(user_id=uuid4(), secret="other-secret")
        resp = TestClient(app).get(
            "/api/v1/boom/trace/echo",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401


@pytest.mark.unit
class TestTraceId:
    def test_client_trace_id_echoed(self, client: TestClient) -> None:
        resp = client.get("/api/v1/boom/trace/echo", headers={TRACE_HEADER: "req-123"})
        assert resp.headers[TRACE_HEADER] == "req-123"
        assert resp.json()["trace_id"] == "req-123"

    def test_trace_id_generated_when_absent(self, client: TestClient) -> None:
        resp = client.get("/api/v1/boom/trace/echo")
        generated = resp.headers[TRACE_HEADER]
        assert len(generated) == 36
        assert resp.json()["trace_id"] == generated

    def test_trace_id_on_auth_failure(self, app: FastAPI) -> None:
        resp = TestClient(app).get("/api/v1/boom/trace/echo", headers={TRACE_HEADER: "t-1"})
        assert resp.status_code == 401
        assert resp.headers[TRACE_HEADER] == "t-1"


@pytest.mark.unit
class TestErrorMapping:
    @pytest.mark.parametrize(
        ("kind", "status", "code"),
        [
            ("validation", 422, "VALIDATION"),
            ("not-found", 404, "NOT_FOUND"),
            ("conflict", 409, "CONFLICT"),
            ("ambiguous", 409, "AMBIGUOUS_ROLE"),
            ("unavailable", 503, "SERVICE_UNAVAILABLE"),
            ("generic", 500, "PMS_ERROR"),
            ("db-down", 503, "SERVICE_UNAVAILABLE"),
        ],
    )
    def test_error_status(self, client: TestClient, kind: str, status: int, code: str) -> None:
        resp = client.get(f"/api/v1/boom/{kind}")
        assert resp.status_code == status
        body = resp.json()
        assert body["error"] == code
        assert body["message"]

    def test_ambiguous_message_lists_roles(self, client: TestClient) -> None:
        body = client.get("/api/v1/boom/ambiguous").json()
        assert "Client, PMC" in body["message"]
