"""
Tests for the permission catalog, system roles and custom roles.
"""

import pytest

from clinic_access.constants.permissions import (
    ALL_PERMISSION_NAMES,
    PERMISSION_CATALOG,
    Permission,
    SystemRole,
    unknown_permissions,
)
from clinic_access.models.permission import PermissionDefinition
from clinic_access.models.role import SYSTEM_ROLE_TEMPLATES, Role
from clinic_access.platform.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnknownPermissionError,
    ValidationError,
)
from clinic_access.services.role_catalog import RoleCatalogService, seed_access_catalog


@pytest.fixture
def catalog(db_session, seeded_catalog):
    return RoleCatalogService(db_session)


@pytest.fixture
def tenant(make_tenant):
    return make_tenant("MAIN", "Main Clinic")


class TestPermissionCatalog:

    def test_every_permission_has_metadata(self):
        assert set(PERMISSION_CATALOG) == {p.value for p in Permission}
        info = PERMISSION_CATALOG["write_patients"]
        assert (info.module, info.action) == ("patients", "write")
        assert PERMISSION_CATALOG["manage_roles"].module == "access"

    def test_unknown_permissions_keeps_input_order(self):
        assert unknown_permissions(["zzz", "read_patients", "aaa"]) == ["zzz", "aaa"]

    def test_system_role_templates_only_use_known_permissions(self):
        for template in SYSTEM_ROLE_TEMPLATES.values():
            assert set(template["permissions"]) <= ALL_PERMISSION_NAMES

    def test_admin_template_has_everything(self):
        assert set(SYSTEM_ROLE_TEMPLATES["admin"]["permissions"]) == ALL_PERMISSION_NAMES

    def test_staff_is_low_privilege(self):
        staff = set(SYSTEM_ROLE_TEMPLATES["staff"]["permissions"])
        assert "manage_roles" not in staff
        assert "manage_permissions" not in staff
        assert "view_all_clinical_records" not in staff


class TestSeeding:

    def test_seed_is_idempotent(self, db_session, seeded_catalog):
        seed_access_catalog(db_session)

        assert db_session.query(PermissionDefinition).count() == len(PERMISSION_CATALOG)
        system_roles = db_session.query(Role).filter(Role.is_system_role.is_(True)).all()
        assert sorted(r.name for r in system_roles) == sorted(r.value for r in SystemRole)

    def test_seeded_roles_keep_template_order(self, seeded_catalog):
        doctor = seeded_catalog["doctor"]
        assert doctor.permission_names == SYSTEM_ROLE_TEMPLATES["doctor"]["permissions"]
        assert doctor.tenant_id is None

    def test_permissions_grouped_by_module(self, catalog):
        grouped = catalog.permissions_by_module()

        assert "patients" in grouped
        assert {p.name for p in grouped["patients"]} == {
            "read_patients", "write_patients", "delete_patients"
        }
        assert sum(len(v) for v in grouped.values()) == len(PERMISSION_CATALOG)


class TestCustomRoles:

    def test_create_custom_role(self, catalog, tenant):
        role = catalog.create_custom_role(
            tenant.id, "Front_Desk", "Front desk", ["write_patients", "read_patients", "read_patients"]
        )

        assert role.name == "front_desk"
        assert role.is_system_role is False
        assert role.permission_names == ["write_patients", "read_patients"]

    def test_list_roles_includes_system_and_own_custom_only(self, catalog, tenant, make_tenant):
        other = make_tenant("OTHER", "Other Clinic")
        mine = catalog.create_custom_role(tenant.id, "front_desk", "Front desk", [])
        catalog.create_custom_role(other.id, "lab_tech", "Lab tech", [])

        names = [r.name for r in catalog.list_roles(tenant.id)]

        assert mine.name in names
        assert "lab_tech" not in names
        assert set(r.value for r in SystemRole) <= set(names)

    def test_unknown_permission_rejected(self, catalog, tenant):
        with pytest.raises(UnknownPermissionError) as exc_info:
            catalog.create_custom_role(tenant.id, "front_desk", "Front desk", ["read_patients", "fly"])
        assert exc_info.value.details == {"permissions": ["fly"]}

    @pytest.mark.parametrize("name", ["x", "1abc", "has space", "admin"])
    def test_invalid_or_reserved_names(self, catalog, tenant, name):
        with pytest.raises(ValidationError):
            catalog.create_custom_role(tenant.id, name, "Whatever", [])

    def test_duplicate_name_in_same_clinic(self, catalog, tenant):
        catalog.create_custom_role(tenant.id, "front_desk", "Front desk", [])

        with pytest.raises(ConflictError):
            catalog.create_custom_role(tenant.id, "front_desk", "Front desk again", [])

    def test_update_custom_role_permissions(self, catalog, tenant):
        role = catalog.create_custom_role(tenant.id, "front_desk", "Front desk", ["read_patients"])

        catalog.update_role_permissions(role.id, tenant.id, ["read_appointments", "read_patients"])

        assert role.permission_names == ["read_appointments", "read_patients"]

    def test_system_roles_are_read_only(self, catalog, tenant, seeded_catalog):
        with pytest.raises(AuthorizationError) as exc_info:
            catalog.update_role_permissions(seeded_catalog["staff"].id, tenant.id, [])
        assert exc_info.value.code == "SYSTEM_ROLE_IMMUTABLE"

        with pytest.raises(AuthorizationError):
            catalog.deactivate_role(seeded_catalog["staff"].id, tenant.id)

    def test_other_clinics_role_is_not_found(self, catalog, tenant, make_tenant):
        other = make_tenant("OTHER", "Other Clinic")
        foreign = catalog.create_custom_role(other.id, "lab_tech", "Lab tech", [])

        with pytest.raises(NotFoundError):
            catalog.get_role(foreign.id, tenant.id)

    def test_deactivate_custom_role(self, catalog, tenant):
        role = catalog.create_custom_role(tenant.id, "front_desk", "Front desk", [])

        catalog.deactivate_role(role.id, tenant.id)

        assert role.is_active is False
        assert role.name not in [r.name for r in catalog.list_roles(tenant.id)]
        assert role.name in [r.name for r in catalog.list_roles(tenant.id, include_inactive=True)]
