"""Tests for the async engine and session factory."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.infra.db import create_db_engine, create_session_factory

URL = "postgresql+asyncpg://u:p@localhost/test"


@pytest.mark.unit
class TestCreateDbEngine:
    def test_returns_async_engine(self) -> None:
        engine = create_db_engine(URL)
        assert hasattr(engine, "dispose")
        assert "asyncpg" in str(engine.url)

    def test_pool_size_configurable(self) -> None:
        engine = create_db_engine(URL, pool_size=5, max_overflow=10)
        assert engine.pool.size() == 5

    def test_echo_defaults_to_false(self) -> None:
        assert create_db_engine(URL).echo is False

    @pytest.mark.parametrize(
        "url",
        ["postgresql://u:p@localhost/test", "sqlite+aiosqlite:///x.db", ""],
    )
    def test_rejects_non_asyncpg_url(self, url: str) -> None:
        with pytest.raises(ValueError, match="asyncpg"):
            create_db_engine(url)


@pytest.mark.unit
class TestCreateSessionFactory:
    def test_sessions_keep_attributes_after_commit(self) -> None:
        factory = create_session_factory(create_db_engine(URL))
        assert factory.kw["expire_on_commit"] is False
        assert factory.class_ is AsyncSession
