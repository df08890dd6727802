"""Tests for structured error logging.

Verifies: error_code, stack_trace, trace id and redacted context.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.shared.errors import ConflictError, PmsError
from src.shared.logging.error_handler import (
    StructuredError,
    _redact_sensitive,
    create_structured_error,
    log_structured_error,
)
from src.shared.trace_context import trace_context

if TYPE_CHECKING:
    import pytest

_REDACTED = "[REDACTED]"


class TestRedactSensitive:
    def test_redacts_secrets_case_insensitively(self) -> None:
        result = _redact_sensitive({"Authorization": "Bearer x", "token": "abc", "path": "/x"})
        assert result["Authorization"] == _REDACTED
        assert result["token"] == _REDACTED
        assert result["path"] == "/x"

    def test_redacts_nested(self) -> None:
        result = _redact_sensitive({"headers": {"cookie": "sid=1"}})
        assert result["headers"]["cookie"] == _REDACTED


class TestCreateStructuredError:
    def test_from_generic_exception(self) -> None:
        try:
            raise ValueError("bad value")
        except ValueError as exc:
            result = create_structured_error(exc)
        assert result.error_code == "ValueError"
        assert result.message == "bad value"
        assert "bad value" in result.stack_trace

    def test_from_pms_error(self) -> None:
        try:
            raise ConflictError("stale write")
        except PmsError as exc:
            result = create_structured_error(exc, user_id="u-1", context={"path": "/x"})
        assert result.error_code == "CONFLICT"
        assert result.user_id == "u-1"
        assert result.context == {"path": "/x"}

    def test_trace_id_from_context(self) -> None:
        with trace_context("trace-abc"):
            result = create_structured_error(RuntimeError("x"))
        assert result.trace_id == "trace-abc"

    def test_no_trace_outside_request(self) -> None:
        assert create_structured_error(RuntimeError("x")).trace_id == ""


class TestStructuredErrorToDict:
    def test_to_dict_redacts_context(self) -> None:
        se = StructuredError(
            error_code="E",
            message="m",
            stack_trace="...",
            context={"secret": "s", "method": "PUT"},
        )
        d = se.to_dict()
        assert d["context"] == {"secret": _REDACTED, "method": "PUT"}
        assert d["error_code"] == "E"


class TestLogStructuredError:
    def test_logs_at_error_with_extra(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("test.structured")
        with caplog.at_level(logging.ERROR, logger="test.structured"):
            result = log_structured_error(logger, PmsError("boom"), context={"token": "t"})
        assert result.error_code == "PMS_ERROR"
        (record,) = caplog.records
        assert record.levelno == logging.ERROR
        assert record.structured_error["context"]["token"] == _REDACTED

    def test_custom_level(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("test.structured.warn")
        with caplog.at_level(logging.WARNING, logger="test.structured.warn"):
            log_structured_error(logger, ValueError("x"), level=logging.WARNING)
        assert caplog.records[0].levelno == logging.WARNING
