"""
Membership: the join entity binding one identity to one clinic.

A membership carries:
- one or more role assignments, exactly one of them primary
- at most one permission override (grant or deny) per permission name
- an is_active flag; revoking access deactivates rather than deletes

Every change to roles, overrides or activation appends a
MembershipAuditEntry so history survives the current-state rows.

SECURITY:
- (identity_id, tenant_id) is unique at the storage layer; concurrent
  first-time tenant selections resolve through that constraint
- A membership row is the ONLY thing that grants access to a tenant
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from clinic_access.db_base import Base
from clinic_access.models.base import TimestampMixin, generate_uuid, utcnow

if TYPE_CHECKING:
    from clinic_access.models.role import Role


class OverrideEffect(str, enum.Enum):
    """Effect of a per-membership permission override."""
    GRANT = "grant"
    DENY = "deny"


class MembershipAuditAction(str, enum.Enum):
    CREATED = "created"
    REACTIVATED = "reactivated"
    DEACTIVATED = "deactivated"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    PRIMARY_CHANGED = "primary_changed"
    OVERRIDE_SET = "override_set"
    OVERRIDE_CLEARED = "override_cleared"


class Membership(Base, TimestampMixin):
    """
    Access grant of one identity to one tenant.

    Role assignments and overrides are loaded eagerly since every request
    evaluates them.
    """

    __tablename__ = "memberships"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    identity_id = Column(
        String(255),
        ForeignKey("identities.id"),
        nullable=False,
        index=True,
        comment="Identity ID (FK to identities.id)"
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id"),
        nullable=False,
        index=True,
        comment="Tenant ID (FK to tenants.id)"
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="False once access has been revoked"
    )

    joined_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="When the membership was first created"
    )

    last_selected_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last time the identity selected this tenant"
    )

    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_by = Column(String(255), nullable=True)

    identity = relationship("Identity", back_populates="memberships")
    tenant = relationship("Tenant", lazy="joined")

    role_assignments = relationship(
        "MembershipRole",
        back_populates="membership",
        cascade="all, delete-orphan",
        order_by="MembershipRole.assigned_at",
        lazy="selectin",
    )

    overrides = relationship(
        "PermissionOverride",
        back_populates="membership",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("identity_id", "tenant_id", name="uq_membership_identity_tenant"),
        Index("ix_memberships_tenant_active", "tenant_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<Membership(id={self.id}, identity_id={self.identity_id}, "
            f"tenant_id={self.tenant_id}, is_active={self.is_active})>"
        )

    @property
    def primary_assignment(self) -> Optional["MembershipRole"]:
        for assignment in self.role_assignments:
            if assignment.is_primary:
                return assignment
        return None

    @property
    def primary_role(self) -> Optional["Role"]:
        assignment = self.primary_assignment
        return assignment.role if assignment else None

    @property
    def role_ids(self) -> List[str]:
        return [a.role_id for a in self.role_assignments]

    def find_assignment(self, role_id: str) -> Optional["MembershipRole"]:
        for assignment in self.role_assignments:
            if assignment.role_id == role_id:
                return assignment
        return None

    def find_override(self, permission_name: str) -> Optional["PermissionOverride"]:
        for override in self.overrides:
            if override.permission_name == permission_name:
                return override
        return None

    def deactivate(self, deactivated_by: Optional[str] = None) -> None:
        """Soft-revoke access. Roles and overrides are kept."""
        self.is_active = False
        self.deactivated_at = utcnow()
        self.deactivated_by = deactivated_by

    def reactivate(self) -> None:
        self.is_active = True
        self.deactivated_at = None
        self.deactivated_by = None


class MembershipRole(Base):
    """One role assignment on a membership."""

    __tablename__ = "membership_roles"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    membership_id = Column(
        String(255),
        ForeignKey("memberships.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role_id = Column(
        String(255),
        ForeignKey("roles.id"),
        nullable=False,
        index=True,
    )

    is_primary = Column(Boolean, nullable=False, default=False)

    assigned_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    assigned_by = Column(
        String(255),
        nullable=True,
        comment="Identity ID of the admin who assigned the role (NULL = auto-provisioned)"
    )

    membership = relationship("Membership", back_populates="role_assignments")
    role = relationship("Role", lazy="joined")

    __table_args__ = (
        UniqueConstraint("membership_id", "role_id", name="uq_membership_role"),
    )

    def __repr__(self) -> str:
        return (
            f"<MembershipRole(membership_id={self.membership_id}, role_id={self.role_id}, "
            f"is_primary={self.is_primary})>"
        )


class PermissionOverride(Base):
    """Current grant/deny exception for one permission on one membership."""

    __tablename__ = "permission_overrides"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    membership_id = Column(
        String(255),
        ForeignKey("memberships.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    permission_name = Column(String(100), nullable=False)

    effect = Column(Enum(OverrideEffect), nullable=False)

    granted_by = Column(String(255), nullable=True)
    granted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reason = Column(Text, nullable=True)

    membership = relationship("Membership", back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("membership_id", "permission_name", name="uq_override_permission"),
    )

    def __repr__(self) -> str:
        return (
            f"<PermissionOverride(membership_id={self.membership_id}, "
            f"permission={self.permission_name}, effect={self.effect})>"
        )


class MembershipAuditEntry(Base):
    """Append-only history of membership changes."""

    __tablename__ = "membership_audit_entries"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    membership_id = Column(
        String(255),
        ForeignKey("memberships.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action = Column(Enum(MembershipAuditAction), nullable=False)
    actor_id = Column(String(255), nullable=True)
    role_id = Column(String(255), nullable=True)
    permission_name = Column(String(100), nullable=True)
    effect = Column(Enum(OverrideEffect), nullable=True)
    reason = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<MembershipAuditEntry(membership_id={self.membership_id}, action={self.action})>"
