"""Tests for permission resolution, route derivation and table validation."""

import pytest

from practice_core.core.permissions import (
    ROLE_PERMISSIONS,
    Permission,
    get_role_display_name,
    validate_role_table,
)
from practice_core.db.enums import Action, Role
from practice_core.services import permission_service


# =============================================================================
# has_permission
# =============================================================================

def test_platform_admin_wildcard_grants_everything():
    for resource in ("patients", "financial", "anything_at_all"):
        for action in Action:
            assert permission_service.has_permission(Role.PLATFORM_ADMIN, resource, action)


def test_only_one_role_holds_wildcard():
    holders = [
        role for role, perms in ROLE_PERMISSIONS.items() if any(p.is_wildcard for p in perms)
    ]
    assert holders == [Role.PLATFORM_ADMIN]


def test_manage_subsumes_other_actions():
    for action in (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE):
        assert permission_service.has_permission(Role.FRONT_DESK, "appointments", action)


def test_exact_grant_does_not_imply_others():
    assert permission_service.has_permission(Role.FRONT_DESK, "financial", Action.READ)
    assert not permission_service.has_permission(Role.FRONT_DESK, "financial", Action.DELETE)
    assert not permission_service.has_permission(Role.FRONT_DESK, "financial", Action.MANAGE)


def test_default_deny_for_unlisted_resource():
    assert not permission_service.has_permission(Role.CLINICIAN_LIMITED, "staff", Action.READ)
    assert not permission_service.has_permission(Role.PATIENT, "patients", Action.READ)


def test_unknown_inputs_resolve_to_false():
    assert not permission_service.has_permission("dentist", "patients", Action.READ)
    assert not permission_service.has_permission(Role.TENANT_ADMIN, "patients", "approve")
    assert not permission_service.has_permission(Role.TENANT_ADMIN, "", Action.READ)


def test_string_role_and_action_are_accepted():
    assert permission_service.has_permission("front-desk", "patients", "create")


def test_resources_match_literally():
    # No prefix matching: "patients" does not cover "patients_archive"
    assert not permission_service.has_permission(Role.TENANT_ADMIN, "patients_archive", Action.READ)


# =============================================================================
# Sensitive features and hierarchy
# =============================================================================

def test_sensitive_feature_membership():
    assert permission_service.has_sensitive_access(Role.SUPPORT_ENGINEER, "system-console")
    assert not permission_service.has_sensitive_access(Role.TENANT_ADMIN, "system-console")
    assert permission_service.has_sensitive_access(Role.CLINICIAN_FULL, "patient-data-export")


def test_unknown_feature_is_denied():
    assert not permission_service.has_sensitive_access(Role.PLATFORM_ADMIN, "time-travel")


@pytest.mark.parametrize(
    "manager, target, expected",
    [
        (Role.TENANT_ADMIN, Role.FRONT_DESK, True),
        (Role.PLATFORM_ADMIN, Role.TENANT_ADMIN, True),
        (Role.CLINICIAN_FULL, Role.SUPPORT_ENGINEER, False),  # Peers
        (Role.FRONT_DESK, Role.FRONT_DESK, False),
        (Role.PATIENT, Role.FRONT_DESK, False),
        ("unknown", Role.PATIENT, False),
    ],
)
def test_can_manage_is_strict(manager, target, expected):
    assert permission_service.can_manage(manager, target) is expected


# =============================================================================
# Routes
# =============================================================================

def test_patient_sees_portal_only():
    assert permission_service.accessible_routes(Role.PATIENT) == {"/patient-portal"}


def test_front_desk_routes():
    routes = permission_service.accessible_routes(Role.FRONT_DESK)
    assert {"/dashboard", "/patients", "/appointments", "/financial", "/inventory"} <= routes
    assert "/staff" not in routes
    assert "/admin/console" not in routes


def test_support_engineer_gets_feature_routes():
    routes = permission_service.accessible_routes(Role.SUPPORT_ENGINEER)
    assert "/admin/console" in routes
    assert "/admin/audit" in routes
    assert "/patients" not in routes


def test_create_user_context_derives_authority():
    ctx = permission_service.create_user_context(
        user_id="u-1",
        email="u@example.com",
        role="tenant-admin",
        tenant_id="clinic-1",
        display_name="Ada",
    )
    assert ctx.role is Role.TENANT_ADMIN
    assert Permission("staff", Action.MANAGE) in ctx.permissions
    assert "/staff" in ctx.accessible_routes


def test_create_user_context_rejects_unknown_role():
    with pytest.raises(ValueError):
        permission_service.create_user_context(
            user_id="u-1", email="", role="dentist", tenant_id="clinic-1", display_name=""
        )


def test_role_display_names():
    assert get_role_display_name(Role.TENANT_ADMIN) == "Clinic Administrator"
    assert get_role_display_name("front-desk") == "Front Desk"
    assert get_role_display_name("mystery") == "mystery"


# =============================================================================
# Table validation
# =============================================================================

def test_validate_role_table_rejects_missing_role():
    table = dict(ROLE_PERMISSIONS)
    del table[Role.PATIENT]
    with pytest.raises(ValueError, match="patient"):
        validate_role_table(table)


def test_validate_role_table_rejects_empty_grants():
    table = dict(ROLE_PERMISSIONS)
    table[Role.FRONT_DESK] = ()
    with pytest.raises(ValueError, match="front-desk"):
        validate_role_table(table)


def test_validate_role_table_rejects_second_wildcard():
    table = dict(ROLE_PERMISSIONS)
    table[Role.TENANT_ADMIN] = (Permission("*", Action.MANAGE),)
    with pytest.raises(ValueError, match="Wildcard"):
        validate_role_table(table)


def test_wildcard_without_manage_grants_nothing(monkeypatch):
    monkeypatch.setattr(
        permission_service, "get_role_permissions", lambda role: (Permission("*", Action.READ),)
    )
    assert not permission_service.has_permission(Role.FRONT_DESK, "patients", Action.READ)
    assert not permission_service.has_permission(Role.FRONT_DESK, "*", Action.READ)
