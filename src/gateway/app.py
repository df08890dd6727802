"""FastAPI application factory with API partition rules.

- Member API: /api/v1/*         (any valid token)
- Admin API:  /api/v1/admin/*   (token with is_admin, enforced post-auth)
- healthz, metrics, docs: exempt from auth

All errors are returned as {"error": <code>, "message": <text>}.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from src.gateway.middleware.auth import decode_token
from src.shared.errors import (
    AmbiguousRoleError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PmsError,
    ServiceUnavailableError,
    ValidationError,
)
from src.shared.logging.error_handler import log_structured_error
from src.shared.trace_context import TRACE_HEADER, trace_context

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from prometheus_client import CollectorRegistry

logger = logging.getLogger(__name__)

_EXEMPT_PATHS = frozenset(
    {
        "/healthz",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
    }
)

_STATUS_BY_ERROR: tuple[tuple[type[PmsError], int], ...] = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (AmbiguousRoleError, 409),
    (ValidationError, 422),
    (ServiceUnavailableError, 503),
)

# Type alias for post-auth middleware callables
PostAuthMiddleware = Callable[
    [Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]
]


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "message": message})


def register_error_handlers(app: FastAPI) -> None:
    """Map the PmsError hierarchy (and framework errors) to HTTP responses."""

    for error_cls, status_code in _STATUS_BY_ERROR:

        async def _handler(
            _: Request,
            exc: Exception,
            *,
            _status: int = status_code,
        ) -> JSONResponse:
            code = getattr(exc, "code", "PMS_ERROR")
            return _error_response(_status, code, str(exc))

        app.add_exception_handler(error_cls, _handler)

    @app.exception_handler(PmsError)
    async def _pms_error(request: Request, exc: PmsError) -> JSONResponse:
        log_structured_error(
            logger,
            exc,
            user_id=str(getattr(request.state, "user_id", "")),
            context={"path": request.url.path, "method": request.method},
        )
        return _error_response(500, exc.code, str(exc))

    @app.exception_handler(OperationalError)
    async def _database_down(request: Request, exc: OperationalError) -> JSONResponse:
        log_structured_error(
            logger,
            exc,
            user_id=str(getattr(request.state, "user_id", "")),
            context={"path": request.url.path, "method": request.method},
        )
        return _error_response(503, "SERVICE_UNAVAILABLE", "Permission store unavailable")

    @app.exception_handler(RequestValidationError)
    async def _request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        )
        return _error_response(422, "VALIDATION", details or "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        code_map = {
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
        }
        return _error_response(
            exc.status_code,
            code_map.get(exc.status_code, "HTTP_ERROR"),
            exc.detail or f"HTTP {exc.status_code}",
        )


def create_app(
    *,
    jwt_secret: str | None = None,
    cors_origins: list[str] | None = None,
    post_auth_middlewares: list[PostAuthMiddleware] | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
    metrics_registry: CollectorRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        jwt_secret: JWT signing secret. Falls back to JWT_SECRET_KEY env var.
        cors_origins: Allowed CORS origins. Falls back to CORS_ORIGINS env var.
        post_auth_middlewares: Middleware callables that run after JWT auth.
            Each has signature (request, call_next) -> Response.
        lifespan: Async context manager factory for startup/shutdown lifecycle.
        metrics_registry: Registry served at /metrics. Defaults to the
            prometheus_client global registry.

    Returns:
        Configured FastAPI application. Routers are mounted by the caller.
    """
    secret = jwt_secret or os.environ.get("JWT_SECRET_KEY", "")
    if not secret:
        msg = "JWT_SECRET_KEY must be provided via argument or environment variable"
        raise ValueError(msg)

    origins = cors_origins or [
        o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
    ]
    _post_auth = post_auth_middlewares or []

    app = FastAPI(
        title="PMS Permission Service",
        description="Role template, project override and user override permission engine",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.jwt_secret = secret

    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH"],
            allow_headers=["Authorization", "Content-Type", TRACE_HEADER],
        )

    register_error_handlers(app)

    # -- Auth middleware (ASGI) --

    @app.middleware("http")
    async def jwt_auth_middleware(request: Request, call_next: Any) -> Response:
        with trace_context(request.headers.get(TRACE_HEADER)) as trace_id:
            response = await _authenticate_and_dispatch(request, call_next)
            response.headers[TRACE_HEADER] = trace_id
            return response

    async def _authenticate_and_dispatch(request: Request, call_next: Any) -> Response:
        path = request.url.path

        # CORS preflight (OPTIONS) must pass through to CORSMiddleware
        if request.method == "OPTIONS" or path in _EXEMPT_PATHS:
            return await call_next(request)

        # Unknown paths should return 404, not 401.
        route_matched = any(route.matches(request.scope)[0] != Match.NONE for route in app.routes)
        if not route_matched:
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return _error_response(401, "AUTH_FAILED", "Missing or malformed Authorization header")

        try:
            payload = decode_token(auth_header[7:], secret=secret)
        except AuthenticationError as exc:
            return _error_response(401, exc.code, str(exc))

        request.state.user_id = payload.user_id
        request.state.is_admin = payload.is_admin

        # Build a call chain: mw_n(... mw_1(call_next) ...)
        chained = call_next
        for mw in reversed(_post_auth):
            outer = chained

            async def _make_chained(
                req: Request,
                *,
                _mw: PostAuthMiddleware = mw,
                _next: Any = outer,
            ) -> Response:
                return await _mw(req, _next)

            chained = _make_chained

        return await chained(request)

    # -- Exempt routes --

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", tags=["system"], include_in_schema=False)
    async def metrics() -> Response:
        from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

        registry = metrics_registry if metrics_registry is not None else REGISTRY
        return Response(
            content=generate_latest(registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app
