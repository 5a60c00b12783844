"""
Permission catalog rows.

The catalog is seeded from constants.permissions.PERMISSION_CATALOG and is
not editable through the API. Roles and overrides reference permissions
by name only.
"""

from typing import List

from sqlalchemy import Column, String

from clinic_access.db_base import Base
from clinic_access.models.base import TimestampMixin
from clinic_access.constants.permissions import PERMISSION_CATALOG


class PermissionDefinition(Base, TimestampMixin):
    """One entry of the permission catalog."""

    __tablename__ = "permissions"

    name = Column(
        String(100),
        primary_key=True,
        comment="Stable permission name (e.g. write_patients)"
    )
    module = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<PermissionDefinition(name={self.name}, module={self.module})>"


def seed_permission_catalog(db_session) -> List[PermissionDefinition]:
    """
    Insert catalog entries that are missing from the permissions table.

    Idempotent: existing rows are left untouched.

    Returns:
        Newly created rows.
    """
    existing = {name for (name,) in db_session.query(PermissionDefinition.name).all()}
    created: List[PermissionDefinition] = []
    for name, info in PERMISSION_CATALOG.items():
        if name in existing:
            continue
        row = PermissionDefinition(
            name=name,
            module=info.module,
            action=info.action,
            display_name=info.display_name,
        )
        db_session.add(row)
        created.append(row)
    db_session.flush()
    return created
