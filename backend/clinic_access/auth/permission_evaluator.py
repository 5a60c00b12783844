"""
Permission evaluation: membership + role catalog -> effective permission set.

Evaluation order:
1. Union the permissions of EVERY assigned role (not only the primary)
2. Add every override with effect "grant"
3. Remove every override with effect "deny" (last, so deny always wins)

This module is pure: it takes plain snapshots and never touches the
database. The context resolver builds the snapshots from live rows on
every request, so nothing here is cached between requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Sequence, Tuple

from clinic_access.models.membership import Membership, OverrideEffect

logger = logging.getLogger(__name__)

# role_id -> permission names
RoleCatalog = Mapping[str, Sequence[str]]


@dataclass(frozen=True)
class OverrideSnapshot:
    permission_name: str
    effect: OverrideEffect


@dataclass(frozen=True)
class MembershipSnapshot:
    """The parts of a membership the evaluator needs."""

    role_ids: Tuple[str, ...]
    overrides: Tuple[OverrideSnapshot, ...] = field(default_factory=tuple)

    @classmethod
    def from_membership(cls, membership: Membership) -> "MembershipSnapshot":
        return cls(
            role_ids=tuple(a.role_id for a in membership.role_assignments),
            overrides=tuple(
                OverrideSnapshot(o.permission_name, OverrideEffect(o.effect))
                for o in membership.overrides
            ),
        )


def role_catalog_for(membership: Membership) -> Dict[str, Sequence[str]]:
    """Build the role catalog slice covering a membership's assigned roles."""
    catalog: Dict[str, Sequence[str]] = {}
    for assignment in membership.role_assignments:
        role = assignment.role
        if role is not None and role.is_active:
            catalog[role.id] = role.permission_names
    return catalog


def evaluate(membership: MembershipSnapshot, role_catalog: RoleCatalog) -> FrozenSet[str]:
    """
    Compute the effective permission set.

    Roles missing from the catalog (deleted or deactivated) contribute
    nothing.
    """
    granted = set()
    for role_id in membership.role_ids:
        permissions = role_catalog.get(role_id)
        if permissions is None:
            logger.warning(
                "Assigned role missing from catalog",
                extra={"role_id": role_id},
            )
            continue
        granted.update(permissions)

    for override in membership.overrides:
        if override.effect == OverrideEffect.GRANT:
            granted.add(override.permission_name)

    for override in membership.overrides:
        if override.effect == OverrideEffect.DENY:
            granted.discard(override.permission_name)

    return frozenset(granted)


def evaluate_membership(membership: Membership) -> FrozenSet[str]:
    """Evaluate a loaded Membership row."""
    return evaluate(
        MembershipSnapshot.from_membership(membership),
        role_catalog_for(membership),
    )
