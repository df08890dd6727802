"""User override store: per-(project, user) deny-only matrices.

A user override can only revoke. Cells are edited one at a time from the
permissions explorer, or replaced whole when the editor saves its grid.
Clearing the last denied action of a module leaves no trace of that module
in the stored matrix. LTR review/approve cannot be denied (they are never
granted in the first place) and are rejected with ValidationError.

`reset` removes the override, but versions for a (project, user) pair are
never reused: the next write continues from the last version the pair had.
An absent override reports version 0. Clearing the last denied cell keeps
the (now empty) override and bumps its version; only `reset` removes it.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from src.permissions.locking import KeyedLock, check_expected_version
from src.permissions.matrix import DenyMatrix, as_deny_matrix, parse_deny_value
from src.permissions.records import DenyRecord
from src.permissions.registry import is_locked_cell, parse_action, parse_module
from src.ports.permission_store_port import UserOverrideStorePort
from src.shared.errors import ConflictError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.infra.models import PermissionUserOverride
    from src.permissions.matrix import DenyValue
    from src.permissions.metrics import PermissionMetrics
    from src.permissions.registry import Action, ModuleCode

logger = logging.getLogger(__name__)


def _scope(project_id: UUID, user_id: UUID) -> str:
    return f"user override {project_id}/{user_id}"


def _parse_cell(
    module: ModuleCode | str,
    action: Action | str,
    value: DenyValue | str,
) -> tuple[ModuleCode, Action, DenyValue]:
    mod = parse_module(module)
    act = parse_action(action)
    if is_locked_cell(mod, act):
        msg = f"{mod.value}.{act.value} is always denied and cannot be overridden"
        raise ValidationError(msg, field=f"{mod.value}.{act.value}")
    return mod, act, parse_deny_value(value)


class UserOverrideStore(UserOverrideStorePort):
    """In-memory deny store for unit testing and local runs."""

    def __init__(self, *, metrics: PermissionMetrics | None = None) -> None:
        self._records: dict[tuple[UUID, UUID], DenyRecord] = {}
        self._last_versions: dict[tuple[UUID, UUID], int] = {}
        self._locks = KeyedLock()
        self._metrics = metrics

    async def get(self, project_id: UUID, user_id: UUID) -> DenyRecord:
        record = self._records.get((project_id, user_id))
        if record is None:
            return DenyRecord(project_id=project_id, user_id=user_id)
        return record

    async def set_cell(
        self,
        project_id: UUID,
        user_id: UUID,
        module: ModuleCode | str,
        action: Action | str,
        value: DenyValue | str,
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        mod, act, val = _parse_cell(module, action, value)
        async with self._locks.hold((project_id, user_id)):
            current = await self.get(project_id, user_id)
            check_expected_version(
                expected_version, current.version, _scope(project_id, user_id)
            )
            updated = current.matrix.with_cell(mod, act, val)
            if current.version == 0 and not updated:
                # Clearing a cell nobody denied: nothing to store.
                return current
            record = self._store(current, updated)

        logger.info(
            "User override cell set: project=%s user=%s cell=%s.%s value=%s",
            project_id,
            user_id,
            mod.value,
            act.value,
            val.value,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="set_cell")
        return record

    async def replace(
        self,
        project_id: UUID,
        user_id: UUID,
        matrix: DenyMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        value = as_deny_matrix(matrix)
        async with self._locks.hold((project_id, user_id)):
            current = await self.get(project_id, user_id)
            check_expected_version(
                expected_version, current.version, _scope(project_id, user_id)
            )
            record = self._store(current, value)

        logger.info(
            "User override replaced: project=%s user=%s denied_cells=%d",
            project_id,
            user_id,
            len(value),
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="replace")
        return record

    async def reset(self, project_id: UUID, user_id: UUID) -> None:
        async with self._locks.hold((project_id, user_id)):
            self._records.pop((project_id, user_id), None)

        logger.info("User override reset: project=%s user=%s", project_id, user_id)
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="reset")

    def _store(self, current: DenyRecord, matrix: DenyMatrix) -> DenyRecord:
        key = (current.project_id, current.user_id)
        record = DenyRecord(
            project_id=current.project_id,
            user_id=current.user_id,
            matrix=matrix,
            updated_at=datetime.now(UTC),
            version=self._last_versions.get(key, 0) + 1,
        )
        self._records[key] = record
        self._last_versions[key] = record.version
        return record


class PgUserOverrideStore(UserOverrideStorePort):
    """PostgreSQL-backed deny store using SQLAlchemy.

    Cell edits are read-modify-write; the row is selected FOR UPDATE so two
    admins editing the same user never splice their grids together.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        metrics: PermissionMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._metrics = metrics

    async def get(self, project_id: UUID, user_id: UUID) -> DenyRecord:
        from src.infra.models import PermissionUserOverride

        stmt = sa.select(PermissionUserOverride).where(
            PermissionUserOverride.project_id == project_id,
            PermissionUserOverride.user_id == user_id,
            PermissionUserOverride.deleted_at.is_(None),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

        if row is None:
            return DenyRecord(project_id=project_id, user_id=user_id)
        return _orm_to_domain(row)

    async def set_cell(
        self,
        project_id: UUID,
        user_id: UUID,
        module: ModuleCode | str,
        action: Action | str,
        value: DenyValue | str,
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        mod, act, val = _parse_cell(module, action, value)
        record = await self._write(
            project_id,
            user_id,
            lambda current: current.with_cell(mod, act, val),
            expected_version=expected_version,
            create_if_empty=False,
        )
        logger.info(
            "User override cell set: project=%s user=%s cell=%s.%s value=%s",
            project_id,
            user_id,
            mod.value,
            act.value,
            val.value,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="set_cell")
        return record

    async def replace(
        self,
        project_id: UUID,
        user_id: UUID,
        matrix: DenyMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> DenyRecord:
        value = as_deny_matrix(matrix)
        record = await self._write(
            project_id,
            user_id,
            lambda _current: value,
            expected_version=expected_version,
            create_if_empty=True,
        )
        logger.info(
            "User override replaced: project=%s user=%s denied_cells=%d",
            project_id,
            user_id,
            len(value),
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="replace")
        return record

    async def reset(self, project_id: UUID, user_id: UUID) -> None:
        from src.infra.models import PermissionUserOverride

        now = datetime.now(UTC)
        stmt = (
            sa.update(PermissionUserOverride)
            .where(
                PermissionUserOverride.project_id == project_id,
                PermissionUserOverride.user_id == user_id,
                PermissionUserOverride.deleted_at.is_(None),
            )
            .values(matrix={}, deleted_at=now, updated_at=now)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

        logger.info("User override reset: project=%s user=%s", project_id, user_id)
        if self._metrics is not None:
            self._metrics.record_write(scope="user_override", operation="reset")

    async def _write(
        self,
        project_id: UUID,
        user_id: UUID,
        update: Callable[[DenyMatrix], DenyMatrix],
        *,
        expected_version: int | None,
        create_if_empty: bool,
    ) -> DenyRecord:
        """Apply `update` to the locked row in one transaction."""
        from src.infra.models import PermissionUserOverride

        now = datetime.now(UTC)
        stmt = (
            sa.select(PermissionUserOverride)
            .where(
                PermissionUserOverride.project_id == project_id,
                PermissionUserOverride.user_id == user_id,
            )
            .with_for_update()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            # A tombstoned row reads as absent but still holds the last version.
            live = row is not None and row.deleted_at is None
            current = (
                _orm_to_domain(row)
                if live
                else DenyRecord(project_id=project_id, user_id=user_id)
            )
            check_expected_version(
                expected_version, current.version, _scope(project_id, user_id)
            )
            updated: DenyMatrix = update(current.matrix)
            if not live and not updated and not create_if_empty:
                return current
            new_version = (row.version if row is not None else 0) + 1

            if row is None:
                session.add(
                    PermissionUserOverride(
                        id=uuid4(),
                        project_id=project_id,
                        user_id=user_id,
                        matrix=updated.to_wire(),
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                row.matrix = updated.to_wire()
                row.version = new_version
                row.updated_at = now
                row.deleted_at = None

            try:
                await session.commit()
            except IntegrityError as exc:
                msg = f"Concurrent write to {_scope(project_id, user_id)}"
                raise ConflictError(msg) from exc

        return DenyRecord(
            project_id=project_id,
            user_id=user_id,
            matrix=updated,
            updated_at=now,
            version=new_version,
        )


def _orm_to_domain(row: PermissionUserOverride) -> DenyRecord:
    """Convert a PermissionUserOverride ORM row to a DenyRecord."""
    return DenyRecord(
        project_id=row.project_id,
        user_id=row.user_id,
        matrix=DenyMatrix.from_wire(row.matrix or {}),
        updated_at=row.updated_at,
        version=row.version,
    )
