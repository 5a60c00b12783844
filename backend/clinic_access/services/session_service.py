"""
Session lifecycle: login and clinic selection.

State machine (every transition issues a new token; nothing is stored):

    Unauthenticated --login--> Authenticated(no clinic)
    Authenticated   --select--> ClinicSelected(C1)   (membership auto-provisioned)
    ClinicSelected  --switch--> ClinicSelected(C2)   (same validation as select)
    ClinicSelected  --clear---> Authenticated(no clinic)
    any             --logout/expiry--> Unauthenticated

Old tokens are not revoked; they expire after the configured TTL.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from sqlalchemy.orm import Session

from clinic_access.auth.context_resolver import RoleRef, role_refs_for
from clinic_access.auth.jwt import IssuedToken
from clinic_access.auth.permission_evaluator import evaluate_membership
from clinic_access.auth.token_service import TokenService, get_token_service
from clinic_access.models.membership import Membership
from clinic_access.models.tenant import Tenant
from clinic_access.models.user import Identity
from clinic_access.platform.errors import AuthorizationError
from clinic_access.services.identity_service import IdentityService
from clinic_access.services.membership_service import MembershipService
from clinic_access.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)


@dataclass
class TenantSelection:
    """Result of selecting or switching to a clinic."""

    token: IssuedToken
    tenant: Tenant
    membership: Membership
    roles: Tuple[RoleRef, ...]
    effective_permissions: FrozenSet[str]

    @property
    def primary_role(self) -> Optional[RoleRef]:
        for role in self.roles:
            if role.is_primary:
                return role
        return None


@dataclass
class TenantListing:
    """One row of the clinic picker."""

    tenant: Tenant
    membership: Optional[Membership]

    @property
    def has_membership(self) -> bool:
        return self.membership is not None and self.membership.is_active

    @property
    def role(self) -> Optional[str]:
        if not self.has_membership:
            return None
        primary = self.membership.primary_role
        return primary.name if primary else None


class SessionService:
    """Composes identity, directory, membership and tokens into the session flow."""

    def __init__(self, session: Session, token_service: Optional[TokenService] = None):
        self.session = session
        self.token_service = token_service or get_token_service()
        self.identities = IdentityService(session)
        self.directory = TenantDirectory(session)
        self.memberships = MembershipService(session)

    def login(self, email: str, raw_password: str) -> Tuple[Identity, IssuedToken]:
        """
        Verify credentials and issue a clinic-less token.

        Raises:
            InvalidCredentialError, AccountInactiveError
        """
        identity = self.identities.verify_credential(email, raw_password)
        token = self.token_service.issue(identity.id)
        logger.info("Login succeeded", extra={"identity_id": identity.id})
        return identity, token

    def list_my_tenants(self, identity_id: str) -> List[TenantListing]:
        """Active clinics with this identity's membership status in each."""
        memberships = {
            m.tenant_id: m for m in self.memberships.list_for_identity(identity_id)
        }
        return [
            TenantListing(tenant=tenant, membership=memberships.get(tenant.id))
            for tenant in self.directory.list_active()
        ]

    def select_tenant(self, identity_id: str, tenant_id: str) -> TenantSelection:
        """
        Select a clinic, provisioning (or reactivating) the membership.

        Raises:
            NotFoundError: clinic does not exist
            AuthorizationError: clinic is not active
        """
        tenant = self.directory.get(tenant_id)
        if not tenant.is_active:
            logger.warning(
                "Selection of inactive clinic refused",
                extra={"identity_id": identity_id, "tenant_id": tenant_id},
            )
            raise AuthorizationError("Clinic is not active", code="TENANT_INACTIVE")

        membership = self.memberships.ensure_membership(identity_id, tenant.id)
        self.memberships.touch_selected(membership)

        effective = evaluate_membership(membership)
        token = self.token_service.issue(identity_id, tenant_id=tenant.id)

        logger.info(
            "Clinic selected",
            extra={
                "identity_id": identity_id,
                "tenant_id": tenant.id,
                "membership_id": membership.id,
            },
        )
        return TenantSelection(
            token=token,
            tenant=tenant,
            membership=membership,
            roles=role_refs_for(membership),
            effective_permissions=effective,
        )

    def switch_tenant(
        self,
        identity_id: str,
        tenant_id: str,
        from_tenant_id: Optional[str] = None,
    ) -> TenantSelection:
        """Switch clinics. Validated exactly like select_tenant."""
        selection = self.select_tenant(identity_id, tenant_id)
        logger.info(
            "Clinic switched",
            extra={
                "identity_id": identity_id,
                "from_tenant_id": from_tenant_id,
                "to_tenant_id": tenant_id,
            },
        )
        return selection

    def clear_tenant(self, identity_id: str, from_tenant_id: Optional[str] = None) -> IssuedToken:
        """Drop the clinic claim by issuing a clinic-less token."""
        token = self.token_service.issue(identity_id)
        logger.info(
            "Clinic cleared",
            extra={"identity_id": identity_id, "from_tenant_id": from_tenant_id},
        )
        return token
