"""
Tenant model: one clinic.

Tenant.id is the tenant_id carried in session tokens and stamped on every
tenant-scoped row owned by resource handlers. Tenants are deactivated,
never deleted, so historical memberships keep their referent.

SECURITY: tenant_id is ONLY taken from a verified token after membership
re-validation, never from client input.
"""

import enum
from typing import Optional

from sqlalchemy import Column, String, Enum, JSON, Index

from clinic_access.db_base import Base
from clinic_access.models.base import TimestampMixin, generate_uuid


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"      # Temporarily disabled
    DEACTIVATED = "deactivated"  # Permanently disabled


class Tenant(Base, TimestampMixin):
    """
    A clinic.

    Codes are upper-case alphanumeric (see services.tenant_directory) and
    globally unique.
    """

    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key - THIS IS THE tenant_id"
    )

    code = Column(
        String(20),
        nullable=False,
        unique=True,
        comment="Normalized clinic code (A-Z, 0-9)"
    )

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)

    status = Column(
        Enum(TenantStatus),
        nullable=False,
        default=TenantStatus.ACTIVE,
        comment="Tenant lifecycle status"
    )

    settings = Column(
        JSON,
        nullable=True,
        comment="Clinic settings (timezone, currency, working hours)"
    )

    __table_args__ = (
        Index("ix_tenants_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, code={self.code}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if tenant is active."""
        return self.status == TenantStatus.ACTIVE

    def deactivate(self) -> None:
        self.status = TenantStatus.DEACTIVATED

    def get_setting(self, key: str, default: Optional[object] = None):
        return (self.settings or {}).get(key, default)
