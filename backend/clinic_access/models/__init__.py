"""
Database models for the clinic access core.

Importing this package registers every table on Base.metadata.
"""

from clinic_access.models.base import TimestampMixin
from clinic_access.models.user import Identity
from clinic_access.models.tenant import Tenant, TenantStatus
from clinic_access.models.permission import PermissionDefinition, seed_permission_catalog
from clinic_access.models.role import (
    Role,
    RolePermission,
    SYSTEM_ROLE_TEMPLATES,
    get_system_role,
    seed_system_roles,
)
from clinic_access.models.membership import (
    Membership,
    MembershipRole,
    PermissionOverride,
    MembershipAuditEntry,
    MembershipAuditAction,
    OverrideEffect,
)

__all__ = [
    "TimestampMixin",
    "Identity",
    "Tenant",
    "TenantStatus",
    "PermissionDefinition",
    "seed_permission_catalog",
    "Role",
    "RolePermission",
    "SYSTEM_ROLE_TEMPLATES",
    "get_system_role",
    "seed_system_roles",
    "Membership",
    "MembershipRole",
    "PermissionOverride",
    "MembershipAuditEntry",
    "MembershipAuditAction",
    "OverrideEffect",
]
