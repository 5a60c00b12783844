"""
Canonical permission catalog for the clinic access core.

IMPORTANT: This is the single source of truth for permission names.
Roles, overrides and route guards reference these names as plain strings;
the catalog rows in the permissions table are seeded from PERMISSION_CATALOG.

Naming convention: <action>_<module> (e.g. write_patients), except for
cross-cutting capabilities such as manage_roles or view_all_clinical_records.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List


class Permission(str, Enum):
    """
    All permissions in the system.

    Values are the stable names stored on roles and overrides.
    """
    # Patients
    READ_PATIENTS = "read_patients"
    WRITE_PATIENTS = "write_patients"
    DELETE_PATIENTS = "delete_patients"

    # Appointments
    READ_APPOINTMENTS = "read_appointments"
    WRITE_APPOINTMENTS = "write_appointments"
    DELETE_APPOINTMENTS = "delete_appointments"

    # Clinical records
    READ_MEDICAL_RECORDS = "read_medical_records"
    WRITE_MEDICAL_RECORDS = "write_medical_records"
    DELETE_MEDICAL_RECORDS = "delete_medical_records"
    READ_PRESCRIPTIONS = "read_prescriptions"
    WRITE_PRESCRIPTIONS = "write_prescriptions"
    DELETE_PRESCRIPTIONS = "delete_prescriptions"
    READ_ODONTOGRAMS = "read_odontograms"
    WRITE_ODONTOGRAMS = "write_odontograms"
    VIEW_ALL_CLINICAL_RECORDS = "view_all_clinical_records"

    # Billing
    READ_INVOICES = "read_invoices"
    WRITE_INVOICES = "write_invoices"
    DELETE_INVOICES = "delete_invoices"
    READ_PAYMENTS = "read_payments"
    WRITE_PAYMENTS = "write_payments"
    DELETE_PAYMENTS = "delete_payments"

    # Inventory
    READ_INVENTORY = "read_inventory"
    WRITE_INVENTORY = "write_inventory"
    DELETE_INVENTORY = "delete_inventory"

    # Leads
    READ_LEADS = "read_leads"
    WRITE_LEADS = "write_leads"

    # Staff and payroll
    READ_STAFF = "read_staff"
    WRITE_STAFF = "write_staff"
    DELETE_STAFF = "delete_staff"
    VIEW_PAYROLL = "view_payroll"
    MANAGE_PAYROLL = "manage_payroll"

    # Reports
    READ_REPORTS = "read_reports"
    WRITE_REPORTS = "write_reports"
    VIEW_ANALYTICS = "view_analytics"

    # Clinic administration
    MANAGE_CLINIC_SETTINGS = "manage_clinic_settings"
    MANAGE_DEPARTMENTS = "manage_departments"
    MANAGE_SERVICES = "manage_services"
    MANAGE_TESTS = "manage_tests"
    MANAGE_ROLES = "manage_roles"
    MANAGE_PERMISSIONS = "manage_permissions"
    SWITCH_CLINIC = "switch_clinic"


@dataclass(frozen=True)
class PermissionInfo:
    """Display metadata for one catalog entry."""
    name: str
    module: str
    action: str
    display_name: str


# Explicit module/action for names that don't follow <action>_<module>
_SPECIAL_METADATA = {
    Permission.VIEW_ALL_CLINICAL_RECORDS: ("medical_records", "read_all"),
    Permission.VIEW_PAYROLL: ("payroll", "read"),
    Permission.MANAGE_PAYROLL: ("payroll", "manage"),
    Permission.VIEW_ANALYTICS: ("reports", "analytics"),
    Permission.MANAGE_CLINIC_SETTINGS: ("clinic", "manage_settings"),
    Permission.MANAGE_DEPARTMENTS: ("clinic", "manage_departments"),
    Permission.MANAGE_SERVICES: ("clinic", "manage_services"),
    Permission.MANAGE_TESTS: ("clinic", "manage_tests"),
    Permission.MANAGE_ROLES: ("access", "manage_roles"),
    Permission.MANAGE_PERMISSIONS: ("access", "manage_permissions"),
    Permission.SWITCH_CLINIC: ("access", "switch_clinic"),
}


def _build_catalog() -> Dict[str, PermissionInfo]:
    catalog: Dict[str, PermissionInfo] = {}
    for permission in Permission:
        if permission in _SPECIAL_METADATA:
            module, action = _SPECIAL_METADATA[permission]
        else:
            action, module = permission.value.split("_", 1)
        catalog[permission.value] = PermissionInfo(
            name=permission.value,
            module=module,
            action=action,
            display_name=permission.value.replace("_", " ").capitalize(),
        )
    return catalog


PERMISSION_CATALOG: Dict[str, PermissionInfo] = _build_catalog()

ALL_PERMISSION_NAMES: FrozenSet[str] = frozenset(PERMISSION_CATALOG)


def is_known_permission(name: str) -> bool:
    """Check a permission name against the catalog."""
    return name in PERMISSION_CATALOG


def unknown_permissions(names: List[str]) -> List[str]:
    """Return the names (in input order) that are not in the catalog."""
    return [name for name in names if name not in PERMISSION_CATALOG]


class SystemRole(str, Enum):
    """System-defined roles shared by every clinic."""
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    RECEPTIONIST = "receptionist"
    ACCOUNTANT = "accountant"
    STAFF = "staff"
