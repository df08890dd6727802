"""JWT bearer-token verification.

- No token -> 401
- Invalid/expired token -> 401
- Valid token -> user_id + is_admin

Tokens are issued by the external auth service (login/OTP flow); this
service only verifies them. encode_token() exists for tests and local
tooling. Uses PyJWT (HS256). Secret must come from environment.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from uuid import UUID

import jwt

from src.shared.errors import AuthenticationError

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenPayload:
    """Decoded JWT payload."""

    user_id: UUID
    is_admin: bool = False


def encode_token(
    *,
    user_id: UUID,
    secret: str,
    is_admin: bool = False,
    ttl_seconds: int = 3600,
) -> str:
    """Create a signed JWT containing user_id and the admin flag."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "is_admin": is_admin,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def decode_token(token: str, *, secret: str) -> TokenPayload:
    """Decode and validate a JWT. Raises AuthenticationError on failure."""
    try:
        data = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        return TokenPayload(
            user_id=UUID(data["sub"]),
            is_admin=data.get("is_admin") is True,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc
