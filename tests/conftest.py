"""Root conftest - shared fixtures for all test layers.

Markers:
    @pytest.mark.unit        - No external deps
    @pytest.mark.smoke       - Fast subset
    @pytest.mark.integration - Needs a running PostgreSQL
"""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from prometheus_client import CollectorRegistry

from src.permissions.membership import InMemoryMembershipLookup
from src.permissions.metrics import PermissionMetrics
from src.permissions.project_overrides import ProjectOverrideStore
from src.permissions.resolver import PermissionResolver
from src.permissions.templates import RoleTemplateStore
from src.permissions.user_overrides import UserOverrideStore


@pytest.fixture
def project_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> PermissionMetrics:
    """Metrics bound to a private registry (no global collisions)."""
    return PermissionMetrics(registry=metrics_registry)


@pytest.fixture
def templates(metrics: PermissionMetrics) -> RoleTemplateStore:
    return RoleTemplateStore(metrics=metrics)


@pytest.fixture
def overrides(templates: RoleTemplateStore, metrics: PermissionMetrics) -> ProjectOverrideStore:
    return ProjectOverrideStore(templates=templates, metrics=metrics)


@pytest.fixture
def user_overrides(metrics: PermissionMetrics) -> UserOverrideStore:
    return UserOverrideStore(metrics=metrics)


@pytest.fixture
def memberships() -> InMemoryMembershipLookup:
    return InMemoryMembershipLookup()


@pytest.fixture
def resolver(
    templates: RoleTemplateStore,
    overrides: ProjectOverrideStore,
    user_overrides: UserOverrideStore,
    memberships: InMemoryMembershipLookup,
    metrics: PermissionMetrics,
) -> PermissionResolver:
    return PermissionResolver(
        templates=templates,
        overrides=overrides,
        user_overrides=user_overrides,
        memberships=memberships,
        metrics=metrics,
    )
