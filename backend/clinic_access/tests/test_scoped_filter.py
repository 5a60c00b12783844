"""
Tests for scoped filter descriptors.

Row rules are checked two ways: in memory via FilterDescriptor.matches,
and in SQL via FilterDescriptor.apply against a small throwaway schema
that mimics the resource tables owned by other handlers.
"""

import pytest
from sqlalchemy import Column, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_access.auth.context_resolver import ExecutionContext, RoleRef
from clinic_access.auth.jwt import SessionClaims
from clinic_access.constants.permissions import Permission
from clinic_access.models.role import SYSTEM_ROLE_TEMPLATES
from clinic_access.models.user import Identity
from clinic_access.platform.errors import TenantNotSelectedError
from clinic_access.platform.scoped_filter import (
    AnyOf,
    Eq,
    NoRows,
    RelatedTo,
    ResourceKind,
    build_filter,
)

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"


def _context(
    identity_id="doc-1",
    roles=("doctor",),
    permissions=(),
    tenant_id=TENANT,
    custom=None,
    inactive=(),
):
    """
    Build a context by hand. System roles carry their template permissions;
    `custom` maps custom role names to their permission lists.
    """
    custom = custom or {}
    refs = tuple(
        RoleRef(
            id=f"role-{name}",
            name=name,
            display_name=name.title(),
            is_system_role=name not in custom,
            is_primary=(i == 0),
            is_active=name not in inactive,
            permissions=frozenset(
                custom[name] if name in custom
                else SYSTEM_ROLE_TEMPLATES.get(name, {}).get("permissions", ())
            ),
        )
        for i, name in enumerate(roles)
    )
    return ExecutionContext(
        identity=Identity(id=identity_id, email=f"{identity_id}@example.com", password_hash="x"),
        claims=SessionClaims(sub=identity_id, tenant_id=tenant_id, iat=0, exp=1),
        tenant_id=tenant_id,
        membership_id="membership-1" if tenant_id else None,
        roles=refs,
        effective_permissions=frozenset(permissions),
    )


# =============================================================================
# Descriptor construction
# =============================================================================

class TestBuildFilter:

    def test_requires_selected_clinic(self):
        with pytest.raises(TenantNotSelectedError):
            build_filter(_context(tenant_id=None), ResourceKind.INVOICE)

    @pytest.mark.parametrize("kind", [
        ResourceKind.INVOICE,
        ResourceKind.PAYMENT,
        ResourceKind.INVENTORY_ITEM,
        ResourceKind.LEAD,
        ResourceKind.SERVICE,
        ResourceKind.STAFF,
    ])
    def test_non_clinical_kinds_are_tenant_only(self, kind):
        descriptor = build_filter(_context(roles=("doctor",)), kind)

        assert descriptor.predicates == (Eq("tenant_id", TENANT),)
        assert descriptor.is_row_restricted is False

    def test_doctor_sees_assigned_appointments(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.APPOINTMENT)

        assert descriptor.predicates == (Eq("tenant_id", TENANT), Eq("doctor_id", "doc-1"))

    def test_nurse_sees_assigned_appointments(self):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.APPOINTMENT)

        assert descriptor.predicates[1] == Eq("nurse_id", "nurse-1")

    def test_doctor_and_nurse_combine_with_or(self):
        descriptor = build_filter(_context(roles=("doctor", "nurse")), ResourceKind.APPOINTMENT)

        assert descriptor.predicates[1] == AnyOf((Eq("doctor_id", "doc-1"), Eq("nurse_id", "doc-1")))

    def test_unrestricted_role_lifts_restriction(self):
        descriptor = build_filter(_context(roles=("doctor", "receptionist")), ResourceKind.APPOINTMENT)

        assert descriptor.is_row_restricted is False

    def test_custom_role_granting_read_lifts_restriction(self):
        context = _context(roles=("doctor", "front_desk"), custom={"front_desk": ["read_appointments"]})

        assert build_filter(context, ResourceKind.APPOINTMENT).is_row_restricted is False

    def test_custom_role_without_read_keeps_restriction(self):
        context = _context(roles=("doctor", "badge"), custom={"badge": []})

        descriptor = build_filter(context, ResourceKind.APPOINTMENT)

        assert descriptor.predicates == (Eq("tenant_id", TENANT), Eq("doctor_id", "doc-1"))

    def test_inactive_role_is_ignored(self):
        context = _context(
            roles=("doctor", "front_desk"),
            custom={"front_desk": ["read_appointments"]},
            inactive=("front_desk",),
        )

        descriptor = build_filter(context, ResourceKind.APPOINTMENT)

        assert descriptor.predicates[1] == Eq("doctor_id", "doc-1")

    def test_only_inactive_roles_match_nothing(self):
        context = _context(roles=("receptionist",), inactive=("receptionist",))

        assert build_filter(context, ResourceKind.APPOINTMENT).predicates[1] == NoRows()

    def test_nurse_prescriptions_go_through_appointments(self):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.PRESCRIPTION)

        assert descriptor.predicates[1] == RelatedTo(
            kind=ResourceKind.APPOINTMENT,
            local_field="patient_id",
            foreign_field="patient_id",
            predicates=(Eq("tenant_id", TENANT), Eq("nurse_id", "nurse-1")),
        )

    def test_nurse_sees_all_medical_records(self):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.MEDICAL_RECORD)

        assert descriptor.is_row_restricted is False

    def test_bypass_permission(self):
        context = _context(roles=("doctor",), permissions=(Permission.VIEW_ALL_CLINICAL_RECORDS.value,))

        assert build_filter(context, ResourceKind.MEDICAL_RECORD).is_row_restricted is False

    def test_no_roles_matches_nothing(self):
        descriptor = build_filter(_context(roles=()), ResourceKind.PRESCRIPTION)

        assert descriptor.predicates[1] == NoRows()

    def test_doctor_patients_via_appointments_or_prescriptions(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.PATIENT)

        scope = descriptor.predicates[1]
        assert isinstance(scope, AnyOf)
        assert [p.kind for p in scope.predicates] == [
            ResourceKind.APPOINTMENT, ResourceKind.PRESCRIPTION
        ]
        for related in scope.predicates:
            assert related.local_field == "id"
            assert related.predicates == (Eq("tenant_id", TENANT), Eq("doctor_id", "doc-1"))

    def test_nurse_patients_via_appointments_only(self):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.PATIENT)

        scope = descriptor.predicates[1]
        assert isinstance(scope, RelatedTo)
        assert scope.kind == ResourceKind.APPOINTMENT
        assert scope.predicates[1] == Eq("nurse_id", "nurse-1")

    def test_as_dict(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.APPOINTMENT)

        assert descriptor.as_dict() == {
            "resource_kind": "appointment",
            "all_of": [
                {"eq": {"tenant_id": TENANT}},
                {"eq": {"doctor_id": "doc-1"}},
            ],
        }


# =============================================================================
# In-memory matching (write ownership checks)
# =============================================================================

class TestMatches:

    def test_other_clinic_never_matches(self):
        descriptor = build_filter(_context(roles=("admin",)), ResourceKind.INVOICE)

        assert descriptor.matches({"tenant_id": TENANT})
        assert not descriptor.matches({"tenant_id": OTHER_TENANT})

    def test_doctor_appointment_ownership(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.APPOINTMENT)

        assert descriptor.matches({"tenant_id": TENANT, "doctor_id": "doc-1"})
        assert not descriptor.matches({"tenant_id": TENANT, "doctor_id": "doc-2"})
        assert not descriptor.matches({"tenant_id": OTHER_TENANT, "doctor_id": "doc-1"})

    def test_patient_related_match(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.PATIENT)
        appointments = [
            {"tenant_id": TENANT, "patient_id": "p-1", "doctor_id": "doc-1"},
            {"tenant_id": TENANT, "patient_id": "p-2", "doctor_id": "doc-2"},
            {"tenant_id": OTHER_TENANT, "patient_id": "p-3", "doctor_id": "doc-1"},
        ]
        related = {ResourceKind.APPOINTMENT: appointments}

        assert descriptor.matches({"id": "p-1", "tenant_id": TENANT}, related)
        assert not descriptor.matches({"id": "p-2", "tenant_id": TENANT}, related)
        assert not descriptor.matches({"id": "p-3", "tenant_id": TENANT}, related)
        assert not descriptor.matches({"id": "p-1", "tenant_id": TENANT})

    def test_patient_visible_through_own_prescription(self):
        descriptor = build_filter(_context(roles=("doctor",)), ResourceKind.PATIENT)
        related = {ResourceKind.PRESCRIPTION: [
            {"tenant_id": TENANT, "patient_id": "p-1", "doctor_id": "doc-1"},
            {"tenant_id": TENANT, "patient_id": "p-2", "doctor_id": "doc-2"},
        ]}

        assert descriptor.matches({"id": "p-1", "tenant_id": TENANT}, related)
        assert not descriptor.matches({"id": "p-2", "tenant_id": TENANT}, related)

    def test_nurse_prescription_ownership(self):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.PRESCRIPTION)
        related = {ResourceKind.APPOINTMENT: [
            {"tenant_id": TENANT, "patient_id": "p-1", "nurse_id": "nurse-1"},
            {"tenant_id": TENANT, "patient_id": "p-2", "nurse_id": "nurse-2"},
        ]}

        assert descriptor.matches({"tenant_id": TENANT, "patient_id": "p-1"}, related)
        assert not descriptor.matches({"tenant_id": TENANT, "patient_id": "p-2"}, related)
        assert not descriptor.matches({"tenant_id": OTHER_TENANT, "patient_id": "p-1"}, related)


# =============================================================================
# SQL application
# =============================================================================

ResourceBase = declarative_base()


class Patient(ResourceBase):
    __tablename__ = "patients"

    id = Column(String(50), primary_key=True)
    tenant_id = Column(String(50), nullable=False)


class Appointment(ResourceBase):
    __tablename__ = "appointments"

    id = Column(String(50), primary_key=True)
    tenant_id = Column(String(50), nullable=False)
    patient_id = Column(String(50), nullable=False)
    doctor_id = Column(String(50), nullable=True)
    nurse_id = Column(String(50), nullable=True)


class Prescription(ResourceBase):
    __tablename__ = "prescriptions"

    id = Column(String(50), primary_key=True)
    tenant_id = Column(String(50), nullable=False)
    patient_id = Column(String(50), nullable=False)
    doctor_id = Column(String(50), nullable=False)


RELATED_MODELS = {
    ResourceKind.APPOINTMENT: Appointment,
    ResourceKind.PRESCRIPTION: Prescription,
}


@pytest.fixture
def resource_session():
    engine = create_engine("sqlite:///:memory:")
    ResourceBase.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    session.add_all([
        Patient(id="p-1", tenant_id=TENANT),
        Patient(id="p-2", tenant_id=TENANT),
        Patient(id="p-3", tenant_id=OTHER_TENANT),
        Patient(id="p-4", tenant_id=TENANT),
        Appointment(id="a-1", tenant_id=TENANT, patient_id="p-1", doctor_id="doc-1", nurse_id="nurse-1"),
        Appointment(id="a-2", tenant_id=TENANT, patient_id="p-2", doctor_id="doc-2", nurse_id=None),
        Appointment(id="a-3", tenant_id=OTHER_TENANT, patient_id="p-3", doctor_id="doc-1"),
        Prescription(id="rx-1", tenant_id=TENANT, patient_id="p-1", doctor_id="doc-2"),
        Prescription(id="rx-2", tenant_id=TENANT, patient_id="p-4", doctor_id="doc-1"),
        Prescription(id="rx-3", tenant_id=TENANT, patient_id="p-2", doctor_id="doc-2"),
        Prescription(id="rx-4", tenant_id=OTHER_TENANT, patient_id="p-3", doctor_id="doc-1"),
    ])
    session.commit()
    yield session
    session.close()
    engine.dispose()


class TestApply:

    def _ids(self, descriptor, session, model):
        query = descriptor.apply(session.query(model), model, RELATED_MODELS)
        return sorted(row.id for row in query.all())

    def test_admin_sees_whole_clinic(self, resource_session):
        descriptor = build_filter(_context("admin-1", roles=("admin",)), ResourceKind.APPOINTMENT)

        assert self._ids(descriptor, resource_session, Appointment) == ["a-1", "a-2"]

    def test_doctor_sees_own_appointments(self, resource_session):
        descriptor = build_filter(_context("doc-1", roles=("doctor",)), ResourceKind.APPOINTMENT)

        assert self._ids(descriptor, resource_session, Appointment) == ["a-1"]

    def test_nurse_or_doctor(self, resource_session):
        descriptor = build_filter(
            _context("doc-2", roles=("doctor", "nurse")), ResourceKind.APPOINTMENT
        )

        assert self._ids(descriptor, resource_session, Appointment) == ["a-2"]

    def test_doctor_sees_patients_via_appointments_and_prescriptions(self, resource_session):
        descriptor = build_filter(_context("doc-1", roles=("doctor",)), ResourceKind.PATIENT)

        assert self._ids(descriptor, resource_session, Patient) == ["p-1", "p-4"]

    def test_prescribing_doctor_sees_patient_without_appointment(self, resource_session):
        descriptor = build_filter(_context("doc-2", roles=("doctor",)), ResourceKind.PATIENT)

        assert self._ids(descriptor, resource_session, Patient) == ["p-1", "p-2"]

    def test_nurse_patients(self, resource_session):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.PATIENT)

        assert self._ids(descriptor, resource_session, Patient) == ["p-1"]

    def test_doctor_prescriptions(self, resource_session):
        descriptor = build_filter(_context("doc-1", roles=("doctor",)), ResourceKind.PRESCRIPTION)

        assert self._ids(descriptor, resource_session, Prescription) == ["rx-2"]

    def test_nurse_prescriptions_for_assigned_patients(self, resource_session):
        descriptor = build_filter(_context("nurse-1", roles=("nurse",)), ResourceKind.PRESCRIPTION)

        assert self._ids(descriptor, resource_session, Prescription) == ["rx-1"]

    def test_permissionless_custom_role_does_not_widen(self, resource_session):
        context = _context("doc-1", roles=("doctor", "badge"), custom={"badge": []})

        descriptor = build_filter(context, ResourceKind.APPOINTMENT)

        assert self._ids(descriptor, resource_session, Appointment) == ["a-1"]

    def test_no_roles_sees_nothing(self, resource_session):
        descriptor = build_filter(_context(roles=()), ResourceKind.APPOINTMENT)

        assert self._ids(descriptor, resource_session, Appointment) == []

    def test_related_model_required(self, resource_session):
        descriptor = build_filter(_context("doc-1", roles=("doctor",)), ResourceKind.PATIENT)

        with pytest.raises(ValueError):
            descriptor.apply(resource_session.query(Patient), Patient)
