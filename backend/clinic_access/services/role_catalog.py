"""
Role catalog service.

- System roles (tenant_id NULL) are visible to every clinic and read-only
- Custom roles belong to one clinic and may be edited by its admins
- Permission lists are validated against the permission catalog
"""

import re
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_access.constants.permissions import unknown_permissions
from clinic_access.models.permission import PermissionDefinition, seed_permission_catalog
from clinic_access.models.role import SYSTEM_ROLE_TEMPLATES, Role, seed_system_roles
from clinic_access.platform.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnknownPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ROLE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{1,49}$")


def seed_access_catalog(db_session) -> List[Role]:
    """
    Seed the permission catalog and the system roles.

    Idempotent; safe to run on every startup.
    """
    created_permissions = seed_permission_catalog(db_session)
    roles = seed_system_roles(db_session)
    logger.info(
        "Access catalog seeded",
        extra={
            "new_permissions": len(created_permissions),
            "system_roles": len(roles),
        },
    )
    return roles


class RoleCatalogService:
    """Reads and manages roles visible to a clinic."""

    def __init__(self, session: Session):
        self.session = session

    def list_permissions(self) -> List[PermissionDefinition]:
        return (
            self.session.query(PermissionDefinition)
            .order_by(PermissionDefinition.module, PermissionDefinition.name)
            .all()
        )

    def permissions_by_module(self) -> Dict[str, List[PermissionDefinition]]:
        grouped: Dict[str, List[PermissionDefinition]] = OrderedDict()
        for definition in self.list_permissions():
            grouped.setdefault(definition.module, []).append(definition)
        return grouped

    def list_roles(self, tenant_id: str, include_inactive: bool = False) -> List[Role]:
        """System roles plus the clinic's custom roles."""
        query = self.session.query(Role).filter(
            or_(Role.is_system_role.is_(True), Role.tenant_id == tenant_id)
        )
        if not include_inactive:
            query = query.filter(Role.is_active.is_(True))
        return query.order_by(Role.is_system_role.desc(), Role.name).all()

    def get_role(self, role_id: str, tenant_id: str) -> Role:
        """
        Raises:
            NotFoundError: role missing or owned by another clinic
        """
        role = self.session.get(Role, role_id)
        if role is None or not role.is_visible_to(tenant_id):
            raise NotFoundError("Role", role_id)
        return role

    def create_custom_role(
        self,
        tenant_id: str,
        name: str,
        display_name: str,
        permissions: Sequence[str],
        description: Optional[str] = None,
    ) -> Role:
        """
        Raises:
            ValidationError: bad name, or name reserved by a system role
            UnknownPermissionError: permission not in the catalog
            ConflictError: clinic already has a role with that name
        """
        name = (name or "").strip().lower()
        if not ROLE_NAME_PATTERN.match(name):
            raise ValidationError(
                "Role name must be 2-50 lowercase letters, digits or underscores",
                details={"name": name},
            )
        if name in SYSTEM_ROLE_TEMPLATES:
            raise ValidationError(
                "Role name is reserved by a system role",
                details={"name": name},
            )
        self._validate_permissions(permissions)

        role = Role(
            tenant_id=tenant_id,
            name=name,
            display_name=(display_name or name).strip(),
            description=description,
            is_system_role=False,
            is_active=True,
        )
        role.set_permissions(permissions)
        try:
            with self.session.begin_nested():
                self.session.add(role)
                self.session.flush()
        except IntegrityError:
            raise ConflictError("A role with this name already exists", details={"name": name})

        logger.info(
            "Custom role created",
            extra={"tenant_id": tenant_id, "role_id": role.id, "role_name": name},
        )
        return role

    def update_role_permissions(
        self,
        role_id: str,
        tenant_id: str,
        permissions: Sequence[str],
    ) -> Role:
        """
        Replace a custom role's permission list.

        Raises:
            NotFoundError: role not visible to the clinic
            AuthorizationError: role is a system role
            UnknownPermissionError: permission not in the catalog
        """
        role = self.get_role(role_id, tenant_id)
        if role.is_system_role:
            logger.warning(
                "Attempt to modify system role",
                extra={"role_id": role.id, "tenant_id": tenant_id},
            )
            raise AuthorizationError(
                "System roles cannot be modified",
                details={"role_id": role.id},
                code="SYSTEM_ROLE_IMMUTABLE",
            )
        self._validate_permissions(permissions)

        role.set_permissions(permissions)
        self.session.flush()

        logger.info(
            "Role permissions updated",
            extra={
                "tenant_id": tenant_id,
                "role_id": role.id,
                "permission_count": len(role.permissions),
            },
        )
        return role

    def deactivate_role(self, role_id: str, tenant_id: str) -> Role:
        role = self.get_role(role_id, tenant_id)
        if role.is_system_role:
            raise AuthorizationError(
                "System roles cannot be modified",
                details={"role_id": role.id},
                code="SYSTEM_ROLE_IMMUTABLE",
            )
        role.is_active = False
        self.session.flush()
        return role

    @staticmethod
    def _validate_permissions(permissions: Sequence[str]) -> None:
        unknown = unknown_permissions(list(permissions))
        if unknown:
            raise UnknownPermissionError(unknown)

