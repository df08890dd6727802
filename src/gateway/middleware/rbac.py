"""Admin path guard.

- Admin path + token without is_admin -> 403
- Admin path + admin token -> allowed
- Member paths -> no admin check

Every permission-editing endpoint lives under the admin prefix, so stores
and the resolver can assume mutation calls arrive pre-authorized.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse, Response

from src.shared.errors import AuthorizationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import Request

logger = logging.getLogger(__name__)

ADMIN_ACCESS = "admin:access"


class AdminGuardMiddleware:
    """Reject non-admin callers on admin paths.

    Can be used as a standalone checker (check_access) or as a
    PostAuthMiddleware callable for the gateway middleware chain.
    """

    def __init__(self, *, admin_path_prefix: str = "/api/v1/admin/") -> None:
        self._admin_prefix = admin_path_prefix

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """PostAuthMiddleware entry point.

        Reads is_admin from request.state (set by JWT middleware).
        """
        path = request.url.path
        is_admin = getattr(request.state, "is_admin", False)

        try:
            self.check_access(path=path, is_admin=is_admin)
        except AuthorizationError as exc:
            logger.warning(
                "Admin path refused: path=%s user=%s",
                path,
                getattr(request.state, "user_id", None),
            )
            return JSONResponse(
                status_code=403,
                content={"error": exc.code, "message": "Administrative privilege required"},
            )

        return await call_next(request)

    def check_access(self, *, path: str, is_admin: bool) -> None:
        """Check access. Raises AuthorizationError if denied."""
        if path.startswith(self._admin_prefix) and not is_admin:
            raise AuthorizationError(ADMIN_ACCESS)
