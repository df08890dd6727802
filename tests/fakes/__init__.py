"""Shared Fake adapters for testing without unittest.mock.

Fakes stand in for SQLAlchemy sessions so Pg* stores run without a database:
real Python classes with preset return values, no AsyncMock/MagicMock.
"""

from tests.fakes.session import (
    FakeAsyncSession,
    FakeOrmRow,
    FakeResult,
    FakeScalarsResult,
    FakeSessionFactory,
)

__all__ = [
    "FakeAsyncSession",
    "FakeOrmRow",
    "FakeResult",
    "FakeScalarsResult",
    "FakeSessionFactory",
]
