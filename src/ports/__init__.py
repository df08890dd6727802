"""Port interfaces - Layer boundary contracts.

Ports (4):
    RoleTemplateStorePort     - Role template matrices
    ProjectOverrideStorePort  - Per-(project, role) replacement matrices
    UserOverrideStorePort     - Per-(project, user) deny-only matrices
    MembershipLookupPort      - Active project roles (external, read-only)
"""

from src.ports.permission_store_port import (
    MembershipLookupPort,
    ProjectOverrideStorePort,
    RoleTemplateStorePort,
    UserOverrideStorePort,
)

__all__ = [
    "MembershipLookupPort",
    "ProjectOverrideStorePort",
    "RoleTemplateStorePort",
    "UserOverrideStorePort",
]
