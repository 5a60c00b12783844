"""
Membership & role assignment service.

Handles:
- Idempotent membership provisioning on tenant selection
- Assigning and removing roles (exactly one primary at all times)
- Setting and clearing per-permission overrides
- Deactivating memberships (history is kept)

Every mutation appends a MembershipAuditEntry.

CONCURRENCY:
ensure_membership relies on the (identity_id, tenant_id) unique constraint.
The insert runs inside a savepoint; on IntegrityError the savepoint is
rolled back and the existing row is loaded instead. No application-level
locking is used.
"""

import logging
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_access.config.settings import get_auth_settings
from clinic_access.constants.permissions import is_known_permission
from clinic_access.models.base import utcnow
from clinic_access.models.membership import (
    Membership,
    MembershipAuditAction,
    MembershipAuditEntry,
    MembershipRole,
    OverrideEffect,
    PermissionOverride,
)
from clinic_access.models.role import Role, get_system_role
from clinic_access.platform.errors import (
    MembershipConflictError,
    NotFoundError,
    RoleNotVisibleToTenantError,
    UnknownPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class MembershipService:
    """
    Service for memberships, their role assignments and overrides.

    Methods flush but never commit; callers own the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find(self, identity_id: str, tenant_id: str) -> Optional[Membership]:
        """Get the membership for a pair, active or not."""
        return (
            self.session.query(Membership)
            .filter(
                Membership.identity_id == identity_id,
                Membership.tenant_id == tenant_id,
            )
            .first()
        )

    def get(self, membership_id: str, tenant_id: Optional[str] = None) -> Membership:
        """
        Get a membership by id, optionally requiring it to belong to a tenant.

        Raises:
            NotFoundError: no such membership (or it belongs to another tenant)
        """
        query = self.session.query(Membership).filter(Membership.id == membership_id)
        if tenant_id is not None:
            query = query.filter(Membership.tenant_id == tenant_id)
        membership = query.first()
        if membership is None:
            raise NotFoundError("Membership", membership_id)
        return membership

    def list_for_identity(self, identity_id: str) -> List[Membership]:
        return (
            self.session.query(Membership)
            .filter(Membership.identity_id == identity_id)
            .all()
        )

    def list_for_tenant(self, tenant_id: str, include_inactive: bool = False) -> List[Membership]:
        query = self.session.query(Membership).filter(Membership.tenant_id == tenant_id)
        if not include_inactive:
            query = query.filter(Membership.is_active.is_(True))
        return query.order_by(Membership.joined_at).all()

    def audit_history(self, membership_id: str) -> List[MembershipAuditEntry]:
        return (
            self.session.query(MembershipAuditEntry)
            .filter(MembershipAuditEntry.membership_id == membership_id)
            .order_by(MembershipAuditEntry.created_at)
            .all()
        )

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    def ensure_membership(
        self,
        identity_id: str,
        tenant_id: str,
        default_role: Optional[str] = None,
    ) -> Membership:
        """
        Idempotent upsert of the membership for (identity_id, tenant_id).

        - active membership exists: returned unchanged
        - inactive membership exists: reactivated
        - none exists: created with default_role as the single primary role

        Args:
            default_role: System role name for a new membership
                (DEFAULT_TENANT_ROLE when omitted)

        Raises:
            ValidationError: default role is not a seeded system role
            MembershipConflictError: conflict persisted across all retries
        """
        role_name = default_role or get_auth_settings().default_tenant_role
        role = get_system_role(self.session, role_name)
        if role is None:
            raise ValidationError(
                f"Default role '{role_name}' is not defined",
                details={"role": role_name},
            )
        return self._provision(identity_id, tenant_id, role, assigned_by=None)

    def add_member(
        self,
        identity_id: str,
        tenant_id: str,
        role_id: str,
        assigned_by: str,
    ) -> Membership:
        """
        Explicitly grant an identity access to a clinic with a chosen role.

        The role becomes primary whether the membership is new, inactive
        or already active.

        Raises:
            NotFoundError: role missing
            RoleNotVisibleToTenantError: custom role owned by another clinic
        """
        role = self._visible_role(role_id, tenant_id)
        membership = self._provision(identity_id, tenant_id, role, assigned_by=assigned_by)
        primary = membership.primary_assignment
        if primary is None or primary.role_id != role.id:
            membership = self.assign_role(membership.id, role.id, assigned_by, make_primary=True)
        return membership

    def _provision(
        self,
        identity_id: str,
        tenant_id: str,
        role: Role,
        assigned_by: Optional[str],
    ) -> Membership:
        attempts = get_auth_settings().membership_provision_retries

        for attempt in range(1, attempts + 1):
            membership = self.find(identity_id, tenant_id)
            if membership is not None:
                if not membership.is_active:
                    membership.reactivate()
                    self._audit(membership, MembershipAuditAction.REACTIVATED, assigned_by)
                    self.session.flush()
                    logger.info(
                        "Membership reactivated",
                        extra={"membership_id": membership.id, "tenant_id": tenant_id},
                    )
                return membership

            try:
                with self.session.begin_nested():
                    membership = Membership(
                        identity_id=identity_id,
                        tenant_id=tenant_id,
                        is_active=True,
                        joined_at=utcnow(),
                    )
                    membership.role_assignments.append(
                        MembershipRole(
                            role=role,
                            is_primary=True,
                            assigned_by=assigned_by,
                            assigned_at=utcnow(),
                        )
                    )
                    self.session.add(membership)
                    self.session.flush()
                    self._audit(
                        membership,
                        MembershipAuditAction.CREATED,
                        assigned_by,
                        role_id=role.id,
                    )
                    self.session.flush()
            except IntegrityError:
                logger.info(
                    "Membership insert conflicted, reloading",
                    extra={
                        "identity_id": identity_id,
                        "tenant_id": tenant_id,
                        "attempt": attempt,
                    },
                )
                continue

            logger.info(
                "Membership created",
                extra={
                    "membership_id": membership.id,
                    "identity_id": identity_id,
                    "tenant_id": tenant_id,
                    "role": role.name,
                },
            )
            return membership

        logger.error(
            "Membership provisioning failed after retries",
            extra={"identity_id": identity_id, "tenant_id": tenant_id},
        )
        raise MembershipConflictError()

    def _visible_role(self, role_id: str, tenant_id: str) -> Role:
        role = self.session.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role", role_id)
        if not role.is_visible_to(tenant_id):
            logger.warning(
                "Role assignment across tenants refused",
                extra={"tenant_id": tenant_id, "role_id": role_id},
            )
            raise RoleNotVisibleToTenantError(role_id)
        if not role.is_active:
            raise ValidationError("Role is inactive", details={"role_id": role_id})
        return role

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    def assign_role(
        self,
        membership_id: str,
        role_id: str,
        assigned_by: Optional[str],
        make_primary: bool = False,
        tenant_id: Optional[str] = None,
    ) -> Membership:
        """
        Add a role to a membership, optionally making it the primary.

        Demoting the old primary and promoting the new one happen in the
        same flush, so the membership never has zero or two primaries.

        Raises:
            NotFoundError: membership or role missing
            RoleNotVisibleToTenantError: custom role owned by another tenant
            ValidationError: role is inactive
        """
        membership = self.get(membership_id, tenant_id=tenant_id)
        role = self._visible_role(role_id, membership.tenant_id)

        with self.session.begin_nested():
            target = membership.find_assignment(role_id)
            if target is None:
                target = MembershipRole(
                    role=role,
                    is_primary=False,
                    assigned_by=assigned_by,
                    assigned_at=utcnow(),
                )
                membership.role_assignments.append(target)
                self._audit(membership, MembershipAuditAction.ROLE_ASSIGNED, assigned_by, role_id=role_id)

            if make_primary or membership.primary_assignment is None:
                if not target.is_primary:
                    for assignment in membership.role_assignments:
                        assignment.is_primary = assignment is target
                    self._audit(
                        membership, MembershipAuditAction.PRIMARY_CHANGED, assigned_by, role_id=role_id
                    )
            self.session.flush()

        logger.info(
            "Role assigned",
            extra={
                "membership_id": membership.id,
                "role_id": role_id,
                "make_primary": make_primary,
                "assigned_by": assigned_by,
            },
        )
        return membership

    def remove_role(
        self,
        membership_id: str,
        role_id: str,
        removed_by: Optional[str],
        tenant_id: Optional[str] = None,
    ) -> Membership:
        """
        Remove a role assignment.

        The last remaining role can't be removed. Removing the primary
        promotes the oldest remaining assignment.

        Raises:
            NotFoundError: membership missing or role not assigned
            ValidationError: role is the only one left
        """
        membership = self.get(membership_id, tenant_id=tenant_id)
        target = membership.find_assignment(role_id)
        if target is None:
            raise NotFoundError("Role assignment", role_id)
        if len(membership.role_assignments) == 1:
            raise ValidationError(
                "A membership must keep at least one role",
                details={"role_id": role_id},
                code="LAST_ROLE",
            )

        with self.session.begin_nested():
            was_primary = target.is_primary
            membership.role_assignments.remove(target)
            self._audit(membership, MembershipAuditAction.ROLE_REMOVED, removed_by, role_id=role_id)
            if was_primary:
                successor = membership.role_assignments[0]
                successor.is_primary = True
                self._audit(
                    membership,
                    MembershipAuditAction.PRIMARY_CHANGED,
                    removed_by,
                    role_id=successor.role_id,
                )
            self.session.flush()

        logger.info(
            "Role removed",
            extra={"membership_id": membership.id, "role_id": role_id, "removed_by": removed_by},
        )
        return membership

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def set_override(
        self,
        membership_id: str,
        permission_name: str,
        effect: Union[OverrideEffect, str],
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Membership:
        """
        Set the override for one permission, replacing any existing one.

        Raises:
            NotFoundError: membership missing
            UnknownPermissionError: permission not in the catalog
            ValidationError: effect is not grant/deny
        """
        if not is_known_permission(permission_name):
            raise UnknownPermissionError([permission_name])
        try:
            effect = OverrideEffect(effect)
        except ValueError:
            raise ValidationError(
                "Override effect must be 'grant' or 'deny'",
                details={"effect": str(effect)},
            )

        membership = self.get(membership_id, tenant_id=tenant_id)
        override = membership.find_override(permission_name)
        if override is None:
            membership.overrides.append(
                PermissionOverride(
                    permission_name=permission_name,
                    effect=effect,
                    granted_by=granted_by,
                    granted_at=utcnow(),
                    reason=reason,
                )
            )
        else:
            override.effect = effect
            override.granted_by = granted_by
            override.granted_at = utcnow()
            override.reason = reason

        self._audit(
            membership,
            MembershipAuditAction.OVERRIDE_SET,
            granted_by,
            permission_name=permission_name,
            effect=effect,
            reason=reason,
        )
        self.session.flush()

        logger.info(
            "Permission override set",
            extra={
                "membership_id": membership.id,
                "permission": permission_name,
                "effect": effect.value,
                "granted_by": granted_by,
            },
        )
        return membership

    def clear_override(
        self,
        membership_id: str,
        permission_name: str,
        cleared_by: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Membership:
        """Remove the override for one permission. No-op if none is set."""
        membership = self.get(membership_id, tenant_id=tenant_id)
        override = membership.find_override(permission_name)
        if override is None:
            return membership

        membership.overrides.remove(override)
        self._audit(
            membership,
            MembershipAuditAction.OVERRIDE_CLEARED,
            cleared_by,
            permission_name=permission_name,
        )
        self.session.flush()
        logger.info(
            "Permission override cleared",
            extra={"membership_id": membership.id, "permission": permission_name},
        )
        return membership

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def deactivate(
        self,
        membership_id: str,
        deactivated_by: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Membership:
        """Revoke access. Role assignments and overrides are kept."""
        membership = self.get(membership_id, tenant_id=tenant_id)
        if membership.is_active:
            membership.deactivate(deactivated_by)
            self._audit(membership, MembershipAuditAction.DEACTIVATED, deactivated_by)
            self.session.flush()
            logger.info(
                "Membership deactivated",
                extra={"membership_id": membership.id, "deactivated_by": deactivated_by},
            )
        return membership

    def touch_selected(self, membership: Membership) -> None:
        membership.last_selected_at = utcnow()
        self.session.flush()

    def _audit(
        self,
        membership: Membership,
        action: MembershipAuditAction,
        actor_id: Optional[str],
        role_id: Optional[str] = None,
        permission_name: Optional[str] = None,
        effect: Optional[OverrideEffect] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.session.add(
            MembershipAuditEntry(
                membership_id=membership.id,
                action=action,
                actor_id=actor_id,
                role_id=role_id,
                permission_name=permission_name,
                effect=effect,
                reason=reason,
                created_at=utcnow(),
            )
        )
