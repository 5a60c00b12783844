"""
FastAPI dependencies for token authentication.

The bearer token is read from the Authorization header and resolved into
an ExecutionContext on every request. The context is also attached to
request.state.execution_context for handlers that take the Request.

Usage:

    @router.get("/tenants/mine")
    async def mine(context: ExecutionContext = Depends(get_session_context)):
        ...

    @router.get("/tenant/permissions")
    async def permissions(context: ExecutionContext = Depends(require_tenant_context)):
        ...
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import ContextResolver, ExecutionContext
from clinic_access.database.session import get_db_session
from clinic_access.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing header is handled below
security = HTTPBearer(auto_error=False)


def _token_from(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    return credentials.credentials


def get_execution_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db_session),
) -> ExecutionContext:
    """
    Authenticated context. A clinic claim, if present, is re-validated.

    Raises AuthenticationError (401) or AuthorizationError (403).
    """
    context = ContextResolver(db).resolve(_token_from(credentials))
    request.state.execution_context = context
    return context


def require_tenant_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db_session),
) -> ExecutionContext:
    """
    Authenticated context with a selected, re-validated clinic.

    Raises TenantNotSelectedError (400) when the token has no clinic.
    """
    context = ContextResolver(db).resolve(_token_from(credentials), require_tenant=True)
    request.state.execution_context = context
    return context


def get_session_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db_session),
) -> ExecutionContext:
    """
    Identity-only context for the clinic selection endpoints.

    The clinic claim is not re-validated here: select, switch and clear
    issue a new token and validate the target clinic themselves, so a
    revoked membership on the current clinic does not lock the user out
    of switching away from it.
    """
    context = ContextResolver(db).resolve(_token_from(credentials), validate_tenant=False)
    request.state.execution_context = context
    return context
