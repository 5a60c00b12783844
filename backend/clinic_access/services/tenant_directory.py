"""
Tenant directory: clinic records.

Clinic codes are upper-cased, then validated against ^[A-Z0-9]{3,20}$,
then checked for uniqueness. Clinics are deactivated, never deleted.
"""

import re
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_access.models.tenant import Tenant, TenantStatus
from clinic_access.platform.errors import (
    DuplicateCodeError,
    InvalidTenantCodeError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TENANT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")


def normalize_tenant_code(code: str) -> str:
    """
    Normalize and validate a clinic code.

    Raises:
        InvalidTenantCodeError: code does not match the pattern after normalization
    """
    normalized = (code or "").strip().upper()
    if not TENANT_CODE_PATTERN.match(normalized):
        raise InvalidTenantCodeError(code)
    return normalized


class TenantDirectory:
    """Service for clinic records."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        code: str,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Tenant:
        """
        Provision a new clinic.

        Raises:
            InvalidTenantCodeError: code fails validation
            ValidationError: name is empty
            DuplicateCodeError: code already taken
        """
        normalized = normalize_tenant_code(code)
        if not (name or "").strip():
            raise ValidationError("Clinic name is required", details={"field": "name"})

        if self.get_by_code(normalized) is not None:
            raise DuplicateCodeError(normalized)

        tenant = Tenant(
            code=normalized,
            name=name.strip(),
            email=email,
            phone=phone,
            address=address,
            settings=settings or {},
            status=TenantStatus.ACTIVE,
        )
        try:
            with self.session.begin_nested():
                self.session.add(tenant)
                self.session.flush()
        except IntegrityError:
            raise DuplicateCodeError(normalized)

        logger.info("Clinic created", extra={"tenant_id": tenant.id, "code": normalized})
        return tenant

    def get(self, tenant_id: str) -> Tenant:
        """
        Raises:
            NotFoundError: no clinic with that id
        """
        tenant = self.session.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            raise NotFoundError("Clinic", tenant_id)
        return tenant

    def get_by_code(self, code: str) -> Optional[Tenant]:
        return (
            self.session.query(Tenant)
            .filter(Tenant.code == (code or "").strip().upper())
            .first()
        )

    def list_active(self) -> List[Tenant]:
        return (
            self.session.query(Tenant)
            .filter(Tenant.status == TenantStatus.ACTIVE)
            .order_by(Tenant.name)
            .all()
        )

    def deactivate(self, tenant_id: str) -> Tenant:
        tenant = self.get(tenant_id)
        if tenant.is_active:
            tenant.deactivate()
            self.session.flush()
            logger.info("Clinic deactivated", extra={"tenant_id": tenant.id})
        return tenant
