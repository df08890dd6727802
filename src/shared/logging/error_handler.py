"""Structured error logging handler.

- Error logs carry error_code, stack trace, trace id and request context
- Output is a dict under the `structured_error` log-record attribute
- Sensitive context keys (tokens, secrets) are redacted
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import asdict, dataclass, field
from typing import Any

from src.shared.trace_context import get_trace_id


@dataclass(frozen=True)
class StructuredError:
    """Structured representation of an error for logging."""

    error_code: str
    message: str
    stack_trace: str
    context: dict[str, Any] = field(default_factory=dict)
    trace_id: str = ""
    user_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["context"] = _redact_sensitive(d["context"])
        return d


_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "otp",
        "token",
        "secret",
        "authorization",
        "cookie",
        "jwt",
    }
)


def _redact_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in _SENSITIVE_KEYS:
            result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = _redact_sensitive(value)
        else:
            result[key] = value
    return result


def create_structured_error(
    exc: Exception,
    *,
    user_id: str = "",
    context: dict[str, Any] | None = None,
) -> StructuredError:
    """Create a StructuredError from an exception.

    The exception's `.code` (PmsError subclasses) becomes error_code;
    other exceptions fall back to their class name. The trace id is taken
    from the current trace context.
    """
    code = getattr(exc, "code", type(exc).__name__)
    stack = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return StructuredError(
        error_code=code,
        message=str(exc),
        stack_trace="".join(stack),
        context=context or {},
        trace_id=get_trace_id(),
        user_id=user_id,
    )


def log_structured_error(
    logger: logging.Logger,
    exc: Exception,
    *,
    user_id: str = "",
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> StructuredError:
    """Log an exception as a structured error and return it."""
    structured = create_structured_error(exc, user_id=user_id, context=context)
    logger.log(level, "structured_error", extra={"structured_error": structured.to_dict()})
    return structured
