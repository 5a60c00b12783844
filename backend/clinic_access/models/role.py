"""
Data-driven Role model.

- tenant_id IS NULL => system role, shared by every clinic and read-only
- tenant_id IS NOT NULL => custom role owned by that clinic

A role's permissions are an ordered list of permission names held in
RolePermission rows. Roles never point at permission objects directly.

System role templates seed the six built-in roles:
admin, doctor, nurse, receptionist, accountant, staff.
"""

from typing import List, Optional, Sequence

from sqlalchemy import (
    Column,
    String,
    Boolean,
    Integer,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    and_,
)
from sqlalchemy.orm import relationship

from clinic_access.db_base import Base
from clinic_access.models.base import TimestampMixin, generate_uuid
from clinic_access.constants.permissions import Permission, SystemRole


class Role(Base, TimestampMixin):
    """
    A named, reusable permission set.

    Permission names are stored in RolePermission rows ordered by position.
    """

    __tablename__ = "roles"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Owning tenant. NULL for system roles."
    )

    name = Column(
        String(100),
        nullable=False,
        comment="Machine name (e.g. doctor, front_desk_lead)"
    )

    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    is_system_role = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="System roles are shared across tenants and immutable"
    )

    is_active = Column(Boolean, nullable=False, default=True)

    permissions = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        order_by="RolePermission.position",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
        Index("ix_roles_system_name", "is_system_role", "name"),
    )

    def __repr__(self) -> str:
        return (
            f"<Role(id={self.id}, name={self.name}, tenant_id={self.tenant_id}, "
            f"is_system_role={self.is_system_role})>"
        )

    @property
    def permission_names(self) -> List[str]:
        """Permission names in stored order."""
        return [rp.permission_name for rp in self.permissions]

    def is_visible_to(self, tenant_id: str) -> bool:
        """System roles are visible everywhere; custom roles only in their tenant."""
        return self.is_system_role or self.tenant_id == tenant_id

    def set_permissions(self, names: Sequence[str]) -> None:
        """
        Replace the permission list, dropping duplicates but keeping order.

        Rows for names that stay are reused so the (role_id, permission_name)
        constraint is never hit by a delete-then-insert of the same name.
        """
        existing = {rp.permission_name: rp for rp in self.permissions}
        rows = []
        for name in names:
            if any(r.permission_name == name for r in rows):
                continue
            row = existing.get(name) or RolePermission(permission_name=name)
            row.position = len(rows)
            rows.append(row)
        self.permissions = rows


class RolePermission(Base):
    """Permission name attached to a role."""

    __tablename__ = "role_permissions"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    role_id = Column(
        String(255),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    permission_name = Column(
        String(100),
        nullable=False,
        comment="Name from the permission catalog"
    )

    position = Column(Integer, nullable=False, default=0)

    role = relationship("Role", back_populates="permissions")

    __table_args__ = (
        UniqueConstraint("role_id", "permission_name", name="uq_role_permission"),
    )

    def __repr__(self) -> str:
        return f"<RolePermission(role_id={self.role_id}, permission={self.permission_name})>"


# =============================================================================
# System Role Templates
# =============================================================================

_CLINICAL_READ = [
    Permission.READ_PATIENTS,
    Permission.READ_APPOINTMENTS,
    Permission.READ_MEDICAL_RECORDS,
    Permission.READ_PRESCRIPTIONS,
    Permission.READ_ODONTOGRAMS,
]

SYSTEM_ROLE_TEMPLATES: dict[str, dict] = {
    SystemRole.ADMIN.value: {
        "display_name": "Administrator",
        "description": "Full access to the clinic",
        "permissions": [p.value for p in Permission],
    },
    SystemRole.DOCTOR.value: {
        "display_name": "Doctor",
        "description": "Clinical access to own patients and appointments",
        "permissions": [p.value for p in _CLINICAL_READ] + [
            Permission.WRITE_PATIENTS.value,
            Permission.WRITE_APPOINTMENTS.value,
            Permission.WRITE_MEDICAL_RECORDS.value,
            Permission.WRITE_PRESCRIPTIONS.value,
            Permission.WRITE_ODONTOGRAMS.value,
            Permission.READ_INVENTORY.value,
            Permission.READ_REPORTS.value,
            Permission.SWITCH_CLINIC.value,
        ],
    },
    SystemRole.NURSE.value: {
        "display_name": "Nurse",
        "description": "Clinical support for assigned appointments",
        "permissions": [p.value for p in _CLINICAL_READ] + [
            Permission.WRITE_PATIENTS.value,
            Permission.WRITE_APPOINTMENTS.value,
            Permission.WRITE_MEDICAL_RECORDS.value,
            Permission.READ_INVENTORY.value,
            Permission.SWITCH_CLINIC.value,
        ],
    },
    SystemRole.RECEPTIONIST.value: {
        "display_name": "Receptionist",
        "description": "Front desk: patients, scheduling and payments",
        "permissions": [
            Permission.READ_PATIENTS.value,
            Permission.WRITE_PATIENTS.value,
            Permission.READ_APPOINTMENTS.value,
            Permission.WRITE_APPOINTMENTS.value,
            Permission.DELETE_APPOINTMENTS.value,
            Permission.READ_INVOICES.value,
            Permission.WRITE_INVOICES.value,
            Permission.READ_PAYMENTS.value,
            Permission.WRITE_PAYMENTS.value,
            Permission.READ_LEADS.value,
            Permission.WRITE_LEADS.value,
            Permission.READ_STAFF.value,
            Permission.SWITCH_CLINIC.value,
        ],
    },
    SystemRole.ACCOUNTANT.value: {
        "display_name": "Accountant",
        "description": "Billing, payroll and financial reports",
        "permissions": [
            Permission.READ_INVOICES.value,
            Permission.WRITE_INVOICES.value,
            Permission.READ_PAYMENTS.value,
            Permission.WRITE_PAYMENTS.value,
            Permission.READ_INVENTORY.value,
            Permission.READ_REPORTS.value,
            Permission.WRITE_REPORTS.value,
            Permission.VIEW_ANALYTICS.value,
            Permission.VIEW_PAYROLL.value,
            Permission.MANAGE_PAYROLL.value,
            Permission.SWITCH_CLINIC.value,
        ],
    },
    SystemRole.STAFF.value: {
        "display_name": "Staff",
        "description": "Default low-privilege access",
        "permissions": [
            Permission.READ_PATIENTS.value,
            Permission.WRITE_PATIENTS.value,
            Permission.READ_APPOINTMENTS.value,
            Permission.WRITE_APPOINTMENTS.value,
            Permission.READ_INVENTORY.value,
            Permission.SWITCH_CLINIC.value,
        ],
    },
}


def get_system_role(db_session, name: str) -> Optional[Role]:
    """Look up a system role by name."""
    return (
        db_session.query(Role)
        .filter(and_(Role.tenant_id.is_(None), Role.is_system_role.is_(True), Role.name == name))
        .first()
    )


def seed_system_roles(db_session) -> List[Role]:
    """
    Seed the built-in system roles (tenant_id=NULL).

    Idempotent: roles that already exist are returned as-is; their
    permission lists are not rewritten.

    Returns:
        All system Role instances, in template order.
    """
    roles: List[Role] = []
    for name, template in SYSTEM_ROLE_TEMPLATES.items():
        role = get_system_role(db_session, name)
        if role is None:
            role = Role(
                tenant_id=None,
                name=name,
                display_name=template["display_name"],
                description=template["description"],
                is_system_role=True,
            )
            role.set_permissions(template["permissions"])
            db_session.add(role)
            db_session.flush()
        roles.append(role)
    return roles
