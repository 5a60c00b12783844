"""
Authentication endpoints.

POST /auth/register   - create an identity
POST /auth/login      - verify credentials, return a clinic-less token
POST /auth/logout     - acknowledge; tokens are stateless and simply expire
POST /auth/password   - change own password
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.auth.middleware import get_session_context
from clinic_access.database.session import get_db_session
from clinic_access.services.identity_service import IdentityService
from clinic_access.services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# --- Request/Response Models ---


class RegisterRequest(BaseModel):
    email: str = Field(..., description="Login email")
    password: str = Field(..., description="Raw password (min 8 chars)")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class IdentityResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    """A session token. tenant_id is null for clinic-less tokens."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    tenant_id: Optional[str] = None


class LoginResponse(TokenResponse):
    identity: IdentityResponse


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str


def _identity_response(identity) -> IdentityResponse:
    return IdentityResponse(
        id=identity.id,
        email=identity.email,
        first_name=identity.first_name,
        last_name=identity.last_name,
        is_active=identity.is_active,
    )


# --- Endpoints ---


@router.post("/register", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, db: Session = Depends(get_db_session)):
    identity = IdentityService(db).register(
        email=body.email,
        raw_password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    db.commit()
    return _identity_response(identity)


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, db: Session = Depends(get_db_session)):
    identity, token = SessionService(db).login(body.email, body.password)
    return LoginResponse(
        access_token=token.access_token,
        expires_at=token.expires_at,
        tenant_id=None,
        identity=_identity_response(identity),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(context: ExecutionContext = Depends(get_session_context)):
    logger.info("Logout", extra={"identity_id": context.identity_id})


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    body: ChangePasswordRequest,
    context: ExecutionContext = Depends(get_session_context),
    db: Session = Depends(get_db_session),
):
    IdentityService(db).change_password(context.identity_id, body.old_password, body.new_password)
    db.commit()
