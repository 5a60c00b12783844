"""
Tenant-scoped filter descriptors for resource handlers.

Every query and every write ownership check that a resource handler runs
MUST be intersected with the descriptor built here:

    descriptor = context.build_filter(ResourceKind.APPOINTMENT)
    rows = descriptor.apply(db.query(Appointment), Appointment).all()

A descriptor always contains tenant_id == <selected clinic>. For clinical
resource kinds it may add a row-level predicate chosen from ROW_RULES,
keyed by resource kind. Role-conditional visibility lives in that table,
never in handler code.

Row rule semantics:
- A rule maps system clinician roles (doctor, nurse) to an "assigned
  clinician" predicate
- Several clinician roles combine with OR (doctor OR nurse assignment)
- Another active role lifts the restriction only when it grants the
  kind's read permission itself; deactivated roles are ignored
- Holding any of the rule's bypass permissions lifts it as well
- No active role at all matches nothing
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from sqlalchemy import and_, false, or_, select

from clinic_access.constants.permissions import Permission, SystemRole
from clinic_access.platform.errors import TenantNotSelectedError

if TYPE_CHECKING:
    from clinic_access.auth.context_resolver import ExecutionContext

logger = logging.getLogger(__name__)


class ResourceKind(str, enum.Enum):
    """Resource kinds owned by handlers outside this package."""
    PATIENT = "patient"
    APPOINTMENT = "appointment"
    MEDICAL_RECORD = "medical_record"
    PRESCRIPTION = "prescription"
    ODONTOGRAM = "odontogram"
    INVOICE = "invoice"
    PAYMENT = "payment"
    INVENTORY_ITEM = "inventory_item"
    LEAD = "lead"
    SERVICE = "service"
    STAFF = "staff"


def _field_value(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


# =============================================================================
# Predicates
# =============================================================================

@dataclass(frozen=True)
class Eq:
    """field == value"""

    field: str
    value: Any

    def matches(self, record: Any, related: Mapping["ResourceKind", Sequence[Any]]) -> bool:
        return _field_value(record, self.field) == self.value

    def to_clause(self, model, related_models: Mapping["ResourceKind", Any]):
        return getattr(model, self.field) == self.value

    def as_dict(self) -> Dict[str, Any]:
        return {"eq": {self.field: self.value}}


@dataclass(frozen=True)
class AnyOf:
    """OR of predicates."""

    predicates: Tuple["Predicate", ...]

    def matches(self, record: Any, related: Mapping["ResourceKind", Sequence[Any]]) -> bool:
        return any(p.matches(record, related) for p in self.predicates)

    def to_clause(self, model, related_models: Mapping["ResourceKind", Any]):
        return or_(*[p.to_clause(model, related_models) for p in self.predicates])

    def as_dict(self) -> Dict[str, Any]:
        return {"any_of": [p.as_dict() for p in self.predicates]}


@dataclass(frozen=True)
class RelatedTo:
    """
    Row is visible when some row of another kind points at it and matches.

    Example: a patient is visible to a doctor when an appointment with
    appointment.patient_id == patient.id and appointment.doctor_id == <me>
    exists in the same clinic.
    """

    kind: "ResourceKind"
    local_field: str
    foreign_field: str
    predicates: Tuple["Predicate", ...]

    def matches(self, record: Any, related: Mapping["ResourceKind", Sequence[Any]]) -> bool:
        local_value = _field_value(record, self.local_field)
        for row in related.get(self.kind, ()):
            if _field_value(row, self.foreign_field) != local_value:
                continue
            if all(p.matches(row, related) for p in self.predicates):
                return True
        return False

    def to_clause(self, model, related_models: Mapping["ResourceKind", Any]):
        related_model = related_models.get(self.kind)
        if related_model is None:
            raise ValueError(f"No model registered for related kind '{self.kind.value}'")
        subquery = select(getattr(related_model, self.foreign_field)).where(
            and_(*[p.to_clause(related_model, related_models) for p in self.predicates])
        )
        return getattr(model, self.local_field).in_(subquery)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "related": {
                "kind": self.kind.value,
                "local_field": self.local_field,
                "foreign_field": self.foreign_field,
                "where": [p.as_dict() for p in self.predicates],
            }
        }


@dataclass(frozen=True)
class NoRows:
    """Matches nothing."""

    def matches(self, record: Any, related: Mapping["ResourceKind", Sequence[Any]]) -> bool:
        return False

    def to_clause(self, model, related_models: Mapping["ResourceKind", Any]):
        return false()

    def as_dict(self) -> Dict[str, Any]:
        return {"none": True}


Predicate = Union[Eq, AnyOf, RelatedTo, NoRows]


@dataclass(frozen=True)
class FilterDescriptor:
    """
    Immutable AND of predicates, always led by the tenant equality.
    """

    resource_kind: ResourceKind
    tenant_id: str
    predicates: Tuple[Predicate, ...]

    @property
    def is_row_restricted(self) -> bool:
        """True when anything beyond tenant equality applies."""
        return len(self.predicates) > 1

    def matches(
        self,
        record: Any,
        related: Optional[Mapping[ResourceKind, Sequence[Any]]] = None,
    ) -> bool:
        """
        Check one in-memory row (ORM object or dict).

        Used for write ownership checks. RelatedTo predicates look up
        candidate rows in `related`.
        """
        related = related or {}
        return all(p.matches(record, related) for p in self.predicates)

    def apply(self, query, model, related_models: Optional[Mapping[ResourceKind, Any]] = None):
        """Intersect a SQLAlchemy Query or Select with this descriptor."""
        related_models = related_models or {}
        return query.filter(and_(*[p.to_clause(model, related_models) for p in self.predicates]))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "resource_kind": self.resource_kind.value,
            "all_of": [p.as_dict() for p in self.predicates],
        }


# =============================================================================
# Row rules
# =============================================================================

# Builds the assigned-clinician predicate for one role, given the
# identity id and tenant id of the principal.
ScopeBuilder = Callable[[str, str], Predicate]


@dataclass(frozen=True)
class RowRule:
    """Row-level visibility rule for one resource kind."""

    read_permission: str
    role_scopes: Mapping[str, ScopeBuilder]
    bypass_permissions: FrozenSet[str] = field(
        default_factory=lambda: frozenset({Permission.VIEW_ALL_CLINICAL_RECORDS.value})
    )


def _assigned(field_name: str) -> ScopeBuilder:
    def build(identity_id: str, tenant_id: str) -> Predicate:
        return Eq(field_name, identity_id)
    return build


def _related(kind: ResourceKind, field_name: str, local_field: str = "id") -> ScopeBuilder:
    """Visible through a row of `kind` that names this row's patient and the principal."""
    def build(identity_id: str, tenant_id: str) -> Predicate:
        return RelatedTo(
            kind=kind,
            local_field=local_field,
            foreign_field="patient_id",
            predicates=(Eq("tenant_id", tenant_id), Eq(field_name, identity_id)),
        )
    return build


def _either(*builders: ScopeBuilder) -> ScopeBuilder:
    def build(identity_id: str, tenant_id: str) -> Predicate:
        return AnyOf(predicates=tuple(b(identity_id, tenant_id) for b in builders))
    return build


ROW_RULES: Dict[ResourceKind, RowRule] = {
    ResourceKind.APPOINTMENT: RowRule(
        read_permission=Permission.READ_APPOINTMENTS.value,
        role_scopes={
            SystemRole.DOCTOR.value: _assigned("doctor_id"),
            SystemRole.NURSE.value: _assigned("nurse_id"),
        },
    ),
    # Nurses see prescriptions of patients whose appointments they assist
    ResourceKind.PRESCRIPTION: RowRule(
        read_permission=Permission.READ_PRESCRIPTIONS.value,
        role_scopes={
            SystemRole.DOCTOR.value: _assigned("doctor_id"),
            SystemRole.NURSE.value: _related(
                ResourceKind.APPOINTMENT, "nurse_id", local_field="patient_id"
            ),
        },
    ),
    ResourceKind.MEDICAL_RECORD: RowRule(
        read_permission=Permission.READ_MEDICAL_RECORDS.value,
        role_scopes={SystemRole.DOCTOR.value: _assigned("doctor_id")},
    ),
    ResourceKind.ODONTOGRAM: RowRule(
        read_permission=Permission.READ_ODONTOGRAMS.value,
        role_scopes={SystemRole.DOCTOR.value: _assigned("doctor_id")},
    ),
    ResourceKind.PATIENT: RowRule(
        read_permission=Permission.READ_PATIENTS.value,
        role_scopes={
            SystemRole.DOCTOR.value: _either(
                _related(ResourceKind.APPOINTMENT, "doctor_id"),
                _related(ResourceKind.PRESCRIPTION, "doctor_id"),
            ),
            SystemRole.NURSE.value: _related(ResourceKind.APPOINTMENT, "nurse_id"),
        },
    ),
}


def build_filter(context: "ExecutionContext", resource_kind: ResourceKind) -> FilterDescriptor:
    """
    Build the filter descriptor for a resource kind.

    Raises:
        TenantNotSelectedError: context has no selected clinic
    """
    if not context.tenant_id:
        raise TenantNotSelectedError()

    predicates = [Eq("tenant_id", context.tenant_id)]

    rule = ROW_RULES.get(resource_kind)
    if rule is not None:
        scope = _row_scope(rule, context)
        if scope is not None:
            predicates.append(scope)

    descriptor = FilterDescriptor(
        resource_kind=resource_kind,
        tenant_id=context.tenant_id,
        predicates=tuple(predicates),
    )
    logger.debug(
        "Built scoped filter",
        extra={
            "identity_id": context.identity_id,
            "tenant_id": context.tenant_id,
            "filter": descriptor.as_dict(),
        },
    )
    return descriptor


def _row_scope(rule: RowRule, context: "ExecutionContext") -> Optional[Predicate]:
    if rule.bypass_permissions & context.effective_permissions:
        return None

    active_roles = [role for role in context.roles if role.is_active]
    if not active_roles:
        return NoRows()

    scopes = []
    for role in active_roles:
        builder = rule.role_scopes.get(role.name) if role.is_system_role else None
        if builder is not None:
            scope = builder(context.identity_id, context.tenant_id)
            scopes.extend(scope.predicates if isinstance(scope, AnyOf) else (scope,))
        elif rule.read_permission in role.permissions:
            return None

    if not scopes:
        # No clinician role held; the route's permission guard decides alone
        return None
    if len(scopes) == 1:
        return scopes[0]
    return AnyOf(predicates=tuple(scopes))
