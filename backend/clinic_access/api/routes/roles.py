"""
Role catalog management for the selected clinic.

GET    /roles                        - system roles + this clinic's custom roles
POST   /roles                        - create a custom role
PUT    /roles/{role_id}/permissions  - replace a custom role's permissions
DELETE /roles/{role_id}              - deactivate a custom role

SECURITY:
- Reading requires manage_roles or manage_permissions
- Writing requires manage_roles
- System roles are read-only (403)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.constants.permissions import Permission
from clinic_access.database.session import get_db_session
from clinic_access.models.role import Role
from clinic_access.platform.rbac import require_any_permission, require_permission
from clinic_access.services.role_catalog import RoleCatalogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/roles", tags=["roles"])


# --- Request/Response Models ---


class RoleResponse(BaseModel):
    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    is_system_role: bool
    is_active: bool
    permissions: List[str]


class RoleListResponse(BaseModel):
    roles: List[RoleResponse]
    total_count: int


class CreateRoleRequest(BaseModel):
    name: str = Field(..., description="Machine name, lowercase")
    display_name: Optional[str] = None
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


class UpdateRolePermissionsRequest(BaseModel):
    permissions: List[str] = Field(..., description="Full replacement list, in display order")


def _role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        is_system_role=role.is_system_role,
        is_active=role.is_active,
        permissions=role.permission_names,
    )


# --- Endpoints ---


@router.get("", response_model=RoleListResponse)
async def list_roles(
    context: ExecutionContext = Depends(
        require_any_permission(Permission.MANAGE_ROLES, Permission.MANAGE_PERMISSIONS)
    ),
    db: Session = Depends(get_db_session),
):
    roles = RoleCatalogService(db).list_roles(context.tenant_id)
    return RoleListResponse(roles=[_role_response(r) for r in roles], total_count=len(roles))


@router.post("", response_model=RoleResponse, status_code=201)
async def create_role(
    body: CreateRoleRequest,
    context: ExecutionContext = Depends(require_permission(Permission.MANAGE_ROLES)),
    db: Session = Depends(get_db_session),
):
    role = RoleCatalogService(db).create_custom_role(
        tenant_id=context.tenant_id,
        name=body.name,
        display_name=body.display_name or body.name,
        permissions=body.permissions,
        description=body.description,
    )
    db.commit()
    return _role_response(role)


@router.put("/{role_id}/permissions", response_model=RoleResponse)
async def update_role_permissions(
    role_id: str,
    body: UpdateRolePermissionsRequest,
    context: ExecutionContext = Depends(require_permission(Permission.MANAGE_ROLES)),
    db: Session = Depends(get_db_session),
):
    role = RoleCatalogService(db).update_role_permissions(
        role_id=role_id,
        tenant_id=context.tenant_id,
        permissions=body.permissions,
    )
    db.commit()
    logger.info(
        "Role permissions replaced via API",
        extra={"role_id": role_id, "tenant_id": context.tenant_id, "by": context.identity_id},
    )
    return _role_response(role)


@router.delete("/{role_id}", response_model=RoleResponse)
async def deactivate_role(
    role_id: str,
    context: ExecutionContext = Depends(require_permission(Permission.MANAGE_ROLES)),
    db: Session = Depends(get_db_session),
):
    role = RoleCatalogService(db).deactivate_role(role_id, context.tenant_id)
    db.commit()
    return _role_response(role)
