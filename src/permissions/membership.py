"""Membership lookup: which roles a user actively holds in a project.

Role assignment is owned by the admin bookkeeping screens, not by this
service; these adapters only read it. A membership is active on date D
when valid_from <= D and (valid_to is NULL or valid_to >= D).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003 -- used at runtime in dataclass fields

import sqlalchemy as sa

from src.permissions.records import ProjectMember
from src.permissions.registry import RoleKey, parse_role
from src.ports.permission_store_port import MembershipLookupPort
from src.shared.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Membership:
    project_id: UUID
    user_id: UUID
    role: RoleKey
    valid_from: date = date.min
    valid_to: date | None = None

    def is_active(self, on: date) -> bool:
        return self.valid_from <= on and (self.valid_to is None or self.valid_to >= on)


def _group_members(rows: list[tuple[UUID, RoleKey]]) -> list[ProjectMember]:
    by_user: dict[UUID, set[RoleKey]] = {}
    for user_id, role in rows:
        by_user.setdefault(user_id, set()).add(role)
    return [
        ProjectMember(user_id=user_id, roles=frozenset(roles))
        for user_id, roles in sorted(by_user.items(), key=lambda item: str(item[0]))
    ]


class InMemoryMembershipLookup(MembershipLookupPort):
    """In-memory membership table for unit testing and local runs."""

    def __init__(self) -> None:
        self._memberships: list[Membership] = []

    def assign(
        self,
        project_id: UUID,
        user_id: UUID,
        role: RoleKey | str,
        *,
        valid_from: date = date.min,
        valid_to: date | None = None,
    ) -> Membership:
        if valid_to is not None and valid_to < valid_from:
            msg = "valid_to must not precede valid_from"
            raise ValidationError(msg, field="valid_to")
        membership = Membership(
            project_id=project_id,
            user_id=user_id,
            role=parse_role(role),
            valid_from=valid_from,
            valid_to=valid_to,
        )
        self._memberships.append(membership)
        return membership

    async def roles_for(self, project_id: UUID, user_id: UUID, *, on: date) -> frozenset[RoleKey]:
        return frozenset(
            m.role
            for m in self._memberships
            if m.project_id == project_id and m.user_id == user_id and m.is_active(on)
        )

    async def members_of(self, project_id: UUID, *, on: date) -> list[ProjectMember]:
        return _group_members(
            [
                (m.user_id, m.role)
                for m in self._memberships
                if m.project_id == project_id and m.is_active(on)
            ]
        )


class PgMembershipLookup(MembershipLookupPort):
    """PostgreSQL-backed lookup over the user_role_memberships table.

    Rows carrying roles outside RoleKey (e.g. legacy admin roles) hold no
    permission template and are skipped with a warning.
    """

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def roles_for(self, project_id: UUID, user_id: UUID, *, on: date) -> frozenset[RoleKey]:
        from src.infra.models import UserRoleMembership

        stmt = sa.select(UserRoleMembership.user_id, UserRoleMembership.role).where(
            UserRoleMembership.project_id == project_id,
            UserRoleMembership.user_id == user_id,
            *_active_on(on),
        )
        rows = await self._fetch(stmt)
        return frozenset(role for _, role in rows)

    async def members_of(self, project_id: UUID, *, on: date) -> list[ProjectMember]:
        from src.infra.models import UserRoleMembership

        stmt = sa.select(UserRoleMembership.user_id, UserRoleMembership.role).where(
            UserRoleMembership.project_id == project_id,
            *_active_on(on),
        )
        return _group_members(await self._fetch(stmt))

    async def _fetch(self, stmt: sa.Select[tuple[UUID, str]]) -> list[tuple[UUID, RoleKey]]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            raw = result.fetchall()

        rows: list[tuple[UUID, RoleKey]] = []
        for user_id, role in raw:
            try:
                rows.append((user_id, parse_role(role)))
            except ValidationError:
                logger.warning("Skipping membership with unknown role %r (user=%s)", role, user_id)
        return rows


def _active_on(on: date) -> list[sa.ColumnElement[bool]]:
    from src.infra.models import UserRoleMembership

    return [
        UserRoleMembership.valid_from <= on,
        sa.or_(UserRoleMembership.valid_to.is_(None), UserRoleMembership.valid_to >= on),
    ]
