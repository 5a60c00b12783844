"""
Clinic member administration.

GET    /tenant/members                                   - list members
POST   /tenant/members                                   - grant access by email with a role
GET    /tenant/members/{membership_id}/audit             - membership history
POST   /tenant/members/{membership_id}/roles             - assign a role
DELETE /tenant/members/{membership_id}/roles/{role_id}   - remove a role
PUT    /tenant/members/{membership_id}/overrides/{name}  - set grant/deny override
DELETE /tenant/members/{membership_id}/overrides/{name}  - clear override
POST   /tenant/members/{membership_id}/deactivate        - revoke access

SECURITY:
- All endpoints require manage_permissions in the selected clinic
- Memberships of other clinics are reported as not found
- Changes apply on the member's very next request (no token reissue)
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.auth.permission_evaluator import evaluate_membership
from clinic_access.constants.permissions import Permission
from clinic_access.database.session import get_db_session
from clinic_access.models.membership import Membership, OverrideEffect
from clinic_access.platform.errors import NotFoundError
from clinic_access.platform.rbac import require_permission
from clinic_access.services.identity_service import IdentityService
from clinic_access.services.membership_service import MembershipService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenant/members", tags=["tenant-members"])

require_member_admin = require_permission(Permission.MANAGE_PERMISSIONS)


# --- Request/Response Models ---


class RoleAssignmentResponse(BaseModel):
    role_id: str
    role_name: str
    is_primary: bool
    assigned_at: datetime
    assigned_by: Optional[str] = None


class OverrideResponse(BaseModel):
    permission_name: str
    effect: OverrideEffect
    granted_by: Optional[str] = None
    granted_at: datetime
    reason: Optional[str] = None


class MemberResponse(BaseModel):
    id: str
    identity_id: str
    email: Optional[str] = None
    is_active: bool
    joined_at: datetime
    roles: List[RoleAssignmentResponse]
    overrides: List[OverrideResponse]
    effective_permissions: List[str]


class MemberListResponse(BaseModel):
    members: List[MemberResponse]
    total_count: int
    tenant_id: str


class AddMemberRequest(BaseModel):
    email: str
    role_id: str


class AssignRoleRequest(BaseModel):
    role_id: str
    make_primary: bool = False


class SetOverrideRequest(BaseModel):
    effect: OverrideEffect = Field(..., description="grant or deny")
    reason: Optional[str] = None


class AuditEntryResponse(BaseModel):
    action: str
    actor_id: Optional[str] = None
    role_id: Optional[str] = None
    permission_name: Optional[str] = None
    effect: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


def _member_response(membership: Membership) -> MemberResponse:
    return MemberResponse(
        id=membership.id,
        identity_id=membership.identity_id,
        email=membership.identity.email if membership.identity else None,
        is_active=membership.is_active,
        joined_at=membership.joined_at,
        roles=[
            RoleAssignmentResponse(
                role_id=a.role_id,
                role_name=a.role.name,
                is_primary=a.is_primary,
                assigned_at=a.assigned_at,
                assigned_by=a.assigned_by,
            )
            for a in membership.role_assignments
        ],
        overrides=[
            OverrideResponse(
                permission_name=o.permission_name,
                effect=o.effect,
                granted_by=o.granted_by,
                granted_at=o.granted_at,
                reason=o.reason,
            )
            for o in membership.overrides
        ],
        effective_permissions=sorted(evaluate_membership(membership)),
    )


# --- Endpoints ---


@router.get("", response_model=MemberListResponse)
async def list_members(
    include_inactive: bool = False,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    members = MembershipService(db).list_for_tenant(context.tenant_id, include_inactive)
    return MemberListResponse(
        members=[_member_response(m) for m in members],
        total_count=len(members),
        tenant_id=context.tenant_id,
    )


@router.post("", response_model=MemberResponse, status_code=201)
async def add_member(
    body: AddMemberRequest,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    identity = IdentityService(db).get_by_email(body.email)
    if identity is None:
        raise NotFoundError("Identity")
    membership = MembershipService(db).add_member(
        identity_id=identity.id,
        tenant_id=context.tenant_id,
        role_id=body.role_id,
        assigned_by=context.identity_id,
    )
    db.commit()
    return _member_response(membership)


@router.get("/{membership_id}/audit", response_model=List[AuditEntryResponse])
async def membership_audit(
    membership_id: str,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    service = MembershipService(db)
    membership = service.get(membership_id, tenant_id=context.tenant_id)
    return [
        AuditEntryResponse(
            action=entry.action.value,
            actor_id=entry.actor_id,
            role_id=entry.role_id,
            permission_name=entry.permission_name,
            effect=entry.effect.value if entry.effect else None,
            reason=entry.reason,
            created_at=entry.created_at,
        )
        for entry in service.audit_history(membership.id)
    ]


@router.post("/{membership_id}/roles", response_model=MemberResponse)
async def assign_role(
    membership_id: str,
    body: AssignRoleRequest,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    membership = MembershipService(db).assign_role(
        membership_id,
        body.role_id,
        assigned_by=context.identity_id,
        make_primary=body.make_primary,
        tenant_id=context.tenant_id,
    )
    db.commit()
    return _member_response(membership)


@router.delete("/{membership_id}/roles/{role_id}", response_model=MemberResponse)
async def remove_role(
    membership_id: str,
    role_id: str,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    membership = MembershipService(db).remove_role(
        membership_id,
        role_id,
        removed_by=context.identity_id,
        tenant_id=context.tenant_id,
    )
    db.commit()
    return _member_response(membership)


@router.put("/{membership_id}/overrides/{permission_name}", response_model=MemberResponse)
async def set_override(
    membership_id: str,
    permission_name: str,
    body: SetOverrideRequest,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    membership = MembershipService(db).set_override(
        membership_id,
        permission_name,
        body.effect,
        granted_by=context.identity_id,
        reason=body.reason,
        tenant_id=context.tenant_id,
    )
    db.commit()
    return _member_response(membership)


@router.delete("/{membership_id}/overrides/{permission_name}", response_model=MemberResponse)
async def clear_override(
    membership_id: str,
    permission_name: str,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    membership = MembershipService(db).clear_override(
        membership_id,
        permission_name,
        cleared_by=context.identity_id,
        tenant_id=context.tenant_id,
    )
    db.commit()
    return _member_response(membership)


@router.post("/{membership_id}/deactivate", response_model=MemberResponse)
async def deactivate_member(
    membership_id: str,
    context: ExecutionContext = Depends(require_member_admin),
    db: Session = Depends(get_db_session),
):
    membership = MembershipService(db).deactivate(
        membership_id,
        deactivated_by=context.identity_id,
        tenant_id=context.tenant_id,
    )
    db.commit()
    return _member_response(membership)
