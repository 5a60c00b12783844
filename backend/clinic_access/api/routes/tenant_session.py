"""
Clinic selection endpoints (session lifecycle).

GET  /tenants/mine        - active clinics with membership status
POST /tenant/select       - select a clinic (auto-provisions membership)
POST /tenant/switch       - switch clinic (same validation as select)
POST /tenant/clear        - drop the clinic claim
GET  /tenant/permissions  - role and effective permissions for the selected clinic

SECURITY:
- tenant_id in the request body only names the TARGET of a selection;
  access is decided by membership rows, never by the client
- Tokens never embed roles or permissions
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic_access.api.routes.auth import TokenResponse
from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.auth.middleware import get_session_context, require_tenant_context
from clinic_access.database.session import get_db_session
from clinic_access.services.session_service import SessionService, TenantSelection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tenant-session"])


# --- Request/Response Models ---


class TenantSummary(BaseModel):
    id: str
    code: str
    name: str
    has_membership: bool
    role: Optional[str] = None


class MyTenantsResponse(BaseModel):
    tenants: List[TenantSummary]
    current_tenant_id: Optional[str] = None


class SelectTenantRequest(BaseModel):
    tenant_id: str = Field(..., description="Clinic to select")


class RoleSummary(BaseModel):
    id: str
    name: str
    display_name: str
    is_primary: bool


class TenantSelectionResponse(TokenResponse):
    tenant_code: str
    tenant_name: str
    role: Optional[str] = None
    roles: List[RoleSummary]
    effective_permissions: List[str]


class TenantPermissionsResponse(BaseModel):
    tenant_id: str
    role: Optional[str] = None
    roles: List[RoleSummary]
    effective_permissions: List[str]


def _selection_response(selection: TenantSelection) -> TenantSelectionResponse:
    primary = selection.primary_role
    return TenantSelectionResponse(
        access_token=selection.token.access_token,
        expires_at=selection.token.expires_at,
        tenant_id=selection.tenant.id,
        tenant_code=selection.tenant.code,
        tenant_name=selection.tenant.name,
        role=primary.name if primary else None,
        roles=[
            RoleSummary(id=r.id, name=r.name, display_name=r.display_name, is_primary=r.is_primary)
            for r in selection.roles
        ],
        effective_permissions=sorted(selection.effective_permissions),
    )


# --- Endpoints ---


@router.get("/tenants/mine", response_model=MyTenantsResponse)
async def list_my_tenants(
    context: ExecutionContext = Depends(get_session_context),
    db: Session = Depends(get_db_session),
):
    listings = SessionService(db).list_my_tenants(context.identity_id)
    return MyTenantsResponse(
        tenants=[
            TenantSummary(
                id=listing.tenant.id,
                code=listing.tenant.code,
                name=listing.tenant.name,
                has_membership=listing.has_membership,
                role=listing.role,
            )
            for listing in listings
        ],
        current_tenant_id=context.claims.tenant_id,
    )


@router.post("/tenant/select", response_model=TenantSelectionResponse)
async def select_tenant(
    body: SelectTenantRequest,
    context: ExecutionContext = Depends(get_session_context),
    db: Session = Depends(get_db_session),
):
    selection = SessionService(db).select_tenant(context.identity_id, body.tenant_id)
    db.commit()
    return _selection_response(selection)


@router.post("/tenant/switch", response_model=TenantSelectionResponse)
async def switch_tenant(
    body: SelectTenantRequest,
    context: ExecutionContext = Depends(get_session_context),
    db: Session = Depends(get_db_session),
):
    selection = SessionService(db).switch_tenant(
        context.identity_id,
        body.tenant_id,
        from_tenant_id=context.claims.tenant_id,
    )
    db.commit()
    return _selection_response(selection)


@router.post("/tenant/clear", response_model=TokenResponse)
async def clear_tenant(
    context: ExecutionContext = Depends(get_session_context),
    db: Session = Depends(get_db_session),
):
    token = SessionService(db).clear_tenant(
        context.identity_id, from_tenant_id=context.claims.tenant_id
    )
    return TokenResponse(access_token=token.access_token, expires_at=token.expires_at)


@router.get("/tenant/permissions", response_model=TenantPermissionsResponse)
async def current_permissions(context: ExecutionContext = Depends(require_tenant_context)):
    primary = context.primary_role
    return TenantPermissionsResponse(
        tenant_id=context.tenant_id,
        role=primary.name if primary else None,
        roles=[
            RoleSummary(id=r.id, name=r.name, display_name=r.display_name, is_primary=r.is_primary)
            for r in context.roles
        ],
        effective_permissions=sorted(context.effective_permissions),
    )
