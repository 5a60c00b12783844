"""
Permission catalog endpoint (read-only).

GET /permissions - every catalog entry, grouped by module
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.auth.middleware import get_execution_context
from clinic_access.database.session import get_db_session
from clinic_access.services.role_catalog import RoleCatalogService

router = APIRouter(tags=["permissions"])


class PermissionResponse(BaseModel):
    name: str
    module: str
    action: str
    display_name: str
    description: Optional[str] = None


class PermissionCatalogResponse(BaseModel):
    modules: Dict[str, List[PermissionResponse]]
    total_count: int


@router.get("/permissions", response_model=PermissionCatalogResponse)
async def list_permissions(
    context: ExecutionContext = Depends(get_execution_context),
    db: Session = Depends(get_db_session),
):
    grouped = RoleCatalogService(db).permissions_by_module()
    modules = {
        module: [
            PermissionResponse(
                name=p.name,
                module=p.module,
                action=p.action,
                display_name=p.display_name,
                description=p.description,
            )
            for p in definitions
        ]
        for module, definitions in grouped.items()
    }
    return PermissionCatalogResponse(
        modules=modules,
        total_count=sum(len(v) for v in modules.values()),
    )
