"""Project override store: per-(project, role) replacement matrices.

- get() returns None when the pair has no customization; None means
  "fall back to the template", never "all false"
- put() replaces the whole matrix; it is never merged cell-by-cell
- reset_to_template() removes the override and returns the template matrix

Versions are never reused for a (project, role) pair: a save after a reset
continues from the last version the pair ever had, so an editor holding a
version from before the reset gets ConflictError. The absent state always
reports version 0.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from src.permissions.locking import KeyedLock, check_expected_version
from src.permissions.matrix import AllowMatrix, as_allow_matrix
from src.permissions.records import OverrideRecord
from src.permissions.registry import RoleKey, parse_role
from src.ports.permission_store_port import ProjectOverrideStorePort
from src.shared.errors import ConflictError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.infra.models import PermissionProjectOverride
    from src.permissions.metrics import PermissionMetrics
    from src.ports.permission_store_port import RoleTemplateStorePort

logger = logging.getLogger(__name__)


def _scope(project_id: UUID, role: RoleKey) -> str:
    return f"project override {project_id}/{role.value}"


class ProjectOverrideStore(ProjectOverrideStorePort):
    """In-memory override store for unit testing and local runs."""

    def __init__(
        self,
        *,
        templates: RoleTemplateStorePort,
        metrics: PermissionMetrics | None = None,
    ) -> None:
        self._templates = templates
        self._records: dict[tuple[UUID, RoleKey], OverrideRecord] = {}
        self._last_versions: dict[tuple[UUID, RoleKey], int] = {}
        self._locks = KeyedLock()
        self._metrics = metrics

    async def get(self, project_id: UUID, role: RoleKey | str) -> OverrideRecord | None:
        return self._records.get((project_id, parse_role(role)))

    async def put(
        self,
        project_id: UUID,
        role: RoleKey | str,
        matrix: AllowMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> OverrideRecord:
        key = parse_role(role)
        value = as_allow_matrix(matrix)
        async with self._locks.hold((project_id, key)):
            current = self._records.get((project_id, key))
            current_version = current.version if current is not None else 0
            check_expected_version(expected_version, current_version, _scope(project_id, key))
            record = OverrideRecord(
                project_id=project_id,
                role=key,
                matrix=value,
                updated_at=datetime.now(UTC),
                version=self._last_versions.get((project_id, key), 0) + 1,
            )
            self._records[(project_id, key)] = record
            self._last_versions[(project_id, key)] = record.version

        logger.info(
            "Project override saved: project=%s role=%s version=%d",
            project_id,
            key.value,
            record.version,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="project_override", operation="put")
        return record

    async def reset_to_template(self, project_id: UUID, role: RoleKey | str) -> AllowMatrix:
        key = parse_role(role)
        async with self._locks.hold((project_id, key)):
            removed = self._records.pop((project_id, key), None)

        logger.info(
            "Project override reset: project=%s role=%s existed=%s",
            project_id,
            key.value,
            removed is not None,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="project_override", operation="reset")
        return (await self._templates.get(key)).matrix


class PgProjectOverrideStore(ProjectOverrideStorePort):
    """PostgreSQL-backed override store using SQLAlchemy."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        templates: RoleTemplateStorePort,
        metrics: PermissionMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._templates = templates
        self._metrics = metrics

    async def get(self, project_id: UUID, role: RoleKey | str) -> OverrideRecord | None:
        from src.infra.models import PermissionProjectOverride

        key = parse_role(role)
        stmt = sa.select(PermissionProjectOverride).where(
            PermissionProjectOverride.project_id == project_id,
            PermissionProjectOverride.role == key.name,
            PermissionProjectOverride.deleted_at.is_(None),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return _orm_to_domain(row)

    async def put(
        self,
        project_id: UUID,
        role: RoleKey | str,
        matrix: AllowMatrix | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> OverrideRecord:
        from src.infra.models import PermissionProjectOverride

        key = parse_role(role)
        value = as_allow_matrix(matrix)
        now = datetime.now(UTC)
        stmt = (
            sa.select(PermissionProjectOverride)
            .where(
                PermissionProjectOverride.project_id == project_id,
                PermissionProjectOverride.role == key.name,
            )
            .with_for_update()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            # A tombstoned row reads as absent but still holds the last version.
            live = row is not None and row.deleted_at is None
            current_version = row.version if live else 0
            check_expected_version(expected_version, current_version, _scope(project_id, key))
            new_version = (row.version if row is not None else 0) + 1

            if row is None:
                session.add(
                    PermissionProjectOverride(
                        id=uuid4(),
                        project_id=project_id,
                        role=key.name,
                        matrix=value.to_wire(),
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                row.matrix = value.to_wire()
                row.version = new_version
                row.updated_at = now
                row.deleted_at = None

            try:
                await session.commit()
            except IntegrityError as exc:
                msg = f"Concurrent write to {_scope(project_id, key)}"
                raise ConflictError(msg) from exc

        logger.info(
            "Project override saved: project=%s role=%s version=%d",
            project_id,
            key.value,
            new_version,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="project_override", operation="put")
        return OverrideRecord(
            project_id=project_id,
            role=key,
            matrix=value,
            updated_at=now,
            version=new_version,
        )

    async def reset_to_template(self, project_id: UUID, role: RoleKey | str) -> AllowMatrix:
        from src.infra.models import PermissionProjectOverride

        key = parse_role(role)
        now = datetime.now(UTC)
        stmt = (
            sa.update(PermissionProjectOverride)
            .where(
                PermissionProjectOverride.project_id == project_id,
                PermissionProjectOverride.role == key.name,
                PermissionProjectOverride.deleted_at.is_(None),
            )
            .values(deleted_at=now, updated_at=now)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        logger.info(
            "Project override reset: project=%s role=%s existed=%s",
            project_id,
            key.value,
            result.rowcount > 0,
        )
        if self._metrics is not None:
            self._metrics.record_write(scope="project_override", operation="reset")
        return (await self._templates.get(key)).matrix


def _orm_to_domain(row: PermissionProjectOverride) -> OverrideRecord:
    """Convert a PermissionProjectOverride ORM row to an OverrideRecord."""
    return OverrideRecord(
        project_id=row.project_id,
        role=parse_role(row.role),
        matrix=AllowMatrix.from_wire(row.matrix or {}),
        updated_at=row.updated_at,
        version=row.version,
    )
