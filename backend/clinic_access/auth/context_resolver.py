"""
Per-request execution context resolution.

Given nothing but the bearer token:
1. Verify the token (fail closed with AuthenticationError)
2. Load the identity; missing or inactive -> AuthenticationError
3. Route needs a clinic but the token has none -> TenantNotSelectedError
4. Token names a clinic -> load the LIVE membership for (identity, clinic);
   missing/inactive membership or inactive clinic -> AuthorizationError
5. Evaluate the effective permission set from the membership
6. Return an ExecutionContext for downstream handlers

SECURITY:
- The tenant claim is advisory. Access is re-validated against current
  membership rows on every request, so a revoked membership stops working
  immediately even though its token is still validly signed.
- Nothing is cached across requests.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from sqlalchemy.orm import Session

from clinic_access.auth.jwt import SessionClaims
from clinic_access.auth.permission_evaluator import evaluate_membership
from clinic_access.auth.token_service import TokenService, get_token_service
from clinic_access.constants.permissions import Permission
from clinic_access.models.membership import Membership
from clinic_access.models.user import Identity
from clinic_access.platform.errors import (
    AuthenticationError,
    AuthorizationError,
    TenantNotSelectedError,
)
from clinic_access.platform.scoped_filter import FilterDescriptor, ResourceKind, build_filter
from clinic_access.services.membership_service import MembershipService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleRef:
    """A role held through the current membership."""

    id: str
    name: str
    display_name: str
    is_system_role: bool
    is_primary: bool
    is_active: bool = True
    permissions: FrozenSet[str] = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "is_system_role": self.is_system_role,
            "is_primary": self.is_primary,
        }


def role_refs_for(membership: Membership) -> Tuple[RoleRef, ...]:
    return tuple(
        RoleRef(
            id=a.role.id,
            name=a.role.name,
            display_name=a.role.display_name,
            is_system_role=bool(a.role.is_system_role),
            is_primary=bool(a.is_primary),
            is_active=bool(a.role.is_active),
            permissions=frozenset(a.role.permission_names),
        )
        for a in membership.role_assignments
        if a.role is not None
    )


@dataclass
class ExecutionContext:
    """
    Authenticated principal plus (optionally) its live access to one clinic.

    Usage in route handlers:
        @router.get("/appointments")
        async def list_appointments(
            context: ExecutionContext = Depends(require_permission(Permission.READ_APPOINTMENTS)),
            db: Session = Depends(get_db_session),
        ):
            descriptor = context.build_filter(ResourceKind.APPOINTMENT)
            return descriptor.apply(db.query(Appointment), Appointment).all()
    """

    identity: Identity
    claims: SessionClaims
    tenant_id: Optional[str] = None
    membership_id: Optional[str] = None
    roles: Tuple[RoleRef, ...] = ()
    effective_permissions: FrozenSet[str] = frozenset()
    resolved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def identity_id(self) -> str:
        return self.identity.id

    @property
    def has_tenant(self) -> bool:
        return self.tenant_id is not None

    @property
    def primary_role(self) -> Optional[RoleRef]:
        for role in self.roles:
            if role.is_primary:
                return role
        return None

    @property
    def role_names(self) -> Tuple[str, ...]:
        return tuple(role.name for role in self.roles)

    def has_permission(self, permission: Union[Permission, str]) -> bool:
        name = permission.value if isinstance(permission, Permission) else permission
        return name in self.effective_permissions

    def has_any_permission(self, *permissions: Union[Permission, str]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def build_filter(self, resource_kind: ResourceKind) -> FilterDescriptor:
        """Scoped filter every handler must apply to its queries and writes."""
        return build_filter(self, resource_kind)

    def to_dict(self) -> Dict[str, Any]:
        primary = self.primary_role
        return {
            "identity_id": self.identity_id,
            "tenant_id": self.tenant_id,
            "membership_id": self.membership_id,
            "role": primary.name if primary else None,
            "roles": [r.name for r in self.roles],
            "effective_permissions": sorted(self.effective_permissions),
        }


class ContextResolver:
    """
    Resolves an ExecutionContext from a bearer token.

    One instance per request; holds only the request's DB session.
    """

    def __init__(self, session: Session, token_service: Optional[TokenService] = None):
        self.session = session
        self.token_service = token_service or get_token_service()
        self.memberships = MembershipService(session)

    def resolve(
        self,
        token: Optional[str],
        require_tenant: bool = False,
        validate_tenant: bool = True,
    ) -> ExecutionContext:
        """
        Resolve the context for a request.

        Args:
            token: Raw bearer token
            require_tenant: Fail with TenantNotSelectedError if the token
                carries no clinic
            validate_tenant: Re-validate the clinic claim and evaluate
                permissions. Only the tenant-selection endpoints pass False,
                since they validate the target clinic themselves.

        Raises:
            AuthenticationError: bad/expired token, missing/inactive identity
            TenantNotSelectedError: require_tenant and no clinic claim
            AuthorizationError: clinic claim without live active membership
        """
        if not token:
            raise AuthenticationError("Authentication required")

        try:
            claims = self.token_service.verify(token)
        except AuthenticationError as e:
            logger.warning("Token rejected", extra={"error_code": e.code})
            raise

        identity = self.session.get(Identity, claims.identity_id)
        if identity is None or not identity.is_active:
            logger.warning(
                "Token for missing or inactive identity",
                extra={"identity_id": claims.identity_id},
            )
            raise AuthenticationError("Account is not active", code="ACCOUNT_INACTIVE")

        if require_tenant and not claims.tenant_id:
            raise TenantNotSelectedError()

        context = ExecutionContext(identity=identity, claims=claims)
        if not claims.tenant_id or not validate_tenant:
            return context

        membership = self.load_active_membership(identity.id, claims.tenant_id)
        context.tenant_id = claims.tenant_id
        context.membership_id = membership.id
        context.roles = role_refs_for(membership)
        context.effective_permissions = evaluate_membership(membership)

        logger.debug(
            "Resolved execution context",
            extra={
                "identity_id": identity.id,
                "tenant_id": claims.tenant_id,
                "membership_id": membership.id,
                "permission_count": len(context.effective_permissions),
            },
        )
        return context

    def load_active_membership(self, identity_id: str, tenant_id: str) -> Membership:
        """
        Load the live membership backing a clinic claim.

        Raises:
            AuthorizationError: membership missing/inactive or clinic inactive
        """
        membership = self.memberships.find(identity_id, tenant_id)
        if membership is None or not membership.is_active:
            logger.warning(
                "Clinic claim without active membership",
                extra={"identity_id": identity_id, "tenant_id": tenant_id},
            )
            raise AuthorizationError("No active access to this clinic", code="MEMBERSHIP_INACTIVE")
        if membership.tenant is None or not membership.tenant.is_active:
            logger.warning(
                "Clinic claim for inactive clinic",
                extra={"identity_id": identity_id, "tenant_id": tenant_id},
            )
            raise AuthorizationError("Clinic is not active", code="TENANT_INACTIVE")
        return membership
