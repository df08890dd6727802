"""Trace-id propagation via contextvars.

- The gateway sets a trace id per request (from X-Trace-Id or a new UUID4)
- Log records and structured errors read it via get_trace_id()
- The same id is echoed back on the response header
"""

from __future__ import annotations

import re
from collections.abc import Generator  # noqa: TC003 -- used at runtime by contextmanager
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4

TRACE_HEADER = "X-Trace-Id"

# Client-supplied ids are echoed into logs and headers, so keep them tame.
_TRACE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")

current_trace_id: ContextVar[str] = ContextVar("current_trace_id", default="")


def get_trace_id() -> str:
    """Return the current trace_id (empty string if not set)."""
    return current_trace_id.get()


def accept_trace_id(candidate: str | None) -> str:
    """Return the client's trace id if well-formed, else a fresh UUID4."""
    if candidate and _TRACE_ID_PATTERN.match(candidate):
        return candidate
    return str(uuid4())


@contextmanager
def trace_context(trace_id: str | None = None) -> Generator[str, None, None]:
    """Scoped trace_id context manager.

    Sets trace_id for the duration of the `with` block, then restores
    the previous value on exit. Malformed or missing ids are replaced
    with a new UUID4.
    """
    effective_id = accept_trace_id(trace_id)
    token = current_trace_id.set(effective_id)
    try:
        yield effective_id
    finally:
        current_trace_id.reset(token)
