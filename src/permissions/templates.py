"""Role template store: the default allow-matrix for each role.

- get() never returns None: a role without a row resolves to all-false
- put() is a full replacement; the LTR lock is forced by AllowMatrix itself
- No delete: templates are only ever overwritten
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from src.permissions.locking import KeyedLock, check_expected_version
from src.permissions.matrix import AllowMatrix, as_allow_matrix
from src.permissions.records import TemplateRecord
from src.permissions.registry import RoleKey, parse_role
from src.ports.permission_store_port import RoleTemplateStorePort
from src.shared.errors import ConflictError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.infra.models import PermissionTemplate
    from src.permissions.metrics import PermissionMetrics

logger = logging.getLogger(__name__)


class RoleTemplateStore(RoleTemplateStorePort):
    """In-memory template store for unit testing and local runs.

    Production uses the permission_templates table via PgRoleTemplateStore.
    """

    def __init__(self, *, metrics: PermissionMetrics | None = None) -> None:
        self._records: dict[RoleKey, TemplateRecord] = {}
        self._locks = KeyedLock()
        self._metrics = metrics

    async def get(self, role: RoleKey | str) -> TemplateRecord:
        key = parse_role(role)
        return self._records.get(key) or TemplateRecord(role=key)

    async def list_all(self) -> list[TemplateRecord]:
        return [await self.get(role) for role in RoleKey]

    async def put(
        self,
        role: RoleKey | str,
        matrix: AllowMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> TemplateRecord:
        key = parse_role(role)
        value = as_allow_matrix(matrix)
        async with self._locks.hold(key):
            current = await self.get(key)
            check_expected_version(expected_version, current.version, f"template {key.value}")
            record = TemplateRecord(
                role=key,
                matrix=value,
                updated_at=datetime.now(UTC),
                version=current.version + 1,
            )
            self._records[key] = record

        logger.info("Role template saved: role=%s version=%d", key.value, record.version)
        if self._metrics is not None:
            self._metrics.record_write(scope="template", operation="put")
        return record


class PgRoleTemplateStore(RoleTemplateStorePort):
    """PostgreSQL-backed template store using SQLAlchemy.

    Writes select the row FOR UPDATE inside one transaction, so concurrent
    saves of the same role serialize.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        metrics: PermissionMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._metrics = metrics

    async def get(self, role: RoleKey | str) -> TemplateRecord:
        from src.infra.models import PermissionTemplate

        key = parse_role(role)
        stmt = sa.select(PermissionTemplate).where(PermissionTemplate.role == key.name)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

        if row is None:
            return TemplateRecord(role=key)
        return _orm_to_domain(row)

    async def list_all(self) -> list[TemplateRecord]:
        from src.infra.models import PermissionTemplate

        async with self._session_factory() as session:
            result = await session.scalars(sa.select(PermissionTemplate))
            rows = result.all()

        by_role = {parse_role(row.role): _orm_to_domain(row) for row in rows}
        return [by_role.get(role) or TemplateRecord(role=role) for role in RoleKey]

    async def put(
        self,
        role: RoleKey | str,
        matrix: AllowMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> TemplateRecord:
        from src.infra.models import PermissionTemplate

        key = parse_role(role)
        value = as_allow_matrix(matrix)
        now = datetime.now(UTC)
        stmt = (
            sa.select(PermissionTemplate)
            .where(PermissionTemplate.role == key.name)
            .with_for_update()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            current_version = row.version if row is not None else 0
            check_expected_version(expected_version, current_version, f"template {key.value}")

            if row is None:
                session.add(
                    PermissionTemplate(
                        id=uuid4(),
                        role=key.name,
                        matrix=value.to_wire(),
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                row.matrix = value.to_wire()
                row.version = current_version + 1
                row.updated_at = now

            try:
                await session.commit()
            except IntegrityError as exc:
                msg = f"Concurrent write to template {key.value}"
                raise ConflictError(msg) from exc

        record = TemplateRecord(role=key, matrix=value, updated_at=now, version=current_version + 1)
        logger.info("Role template saved: role=%s version=%d", key.value, record.version)
        if self._metrics is not None:
            self._metrics.record_write(scope="template", operation="put")
        return record


def _orm_to_domain(row: PermissionTemplate) -> TemplateRecord:
    """Convert a PermissionTemplate ORM row to a TemplateRecord."""
    return TemplateRecord(
        role=parse_role(row.role),
        matrix=AllowMatrix.from_wire(row.matrix or {}),
        updated_at=row.updated_at,
        version=row.version,
    )
