"""Unit tests for migration 002_add_override_tombstones."""

from __future__ import annotations

import importlib
import inspect

import pytest


@pytest.mark.unit
class TestMigration002:
    @pytest.fixture(autouse=True)
    def _load_module(self):
        self.mod = importlib.import_module("migrations.versions.002_add_override_tombstones")

    def test_revision_chain(self) -> None:
        assert self.mod.revision == "002_override_tombstones"
        assert self.mod.down_revision == "001_permissions"

    def test_covers_both_override_tables(self) -> None:
        assert set(self.mod._TABLES) == {
            "permission_project_overrides",
            "permission_user_overrides",
        }

    def test_downgrade_purges_tombstones_before_dropping(self) -> None:
        source = inspect.getsource(self.mod.downgrade)
        assert source.index("DELETE") < source.index("drop_column")
