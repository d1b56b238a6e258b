"""Role/permission tables, sensitive feature gates and the route registry.

Everything here is static and loaded once at import. The tables are validated
before the module finishes importing, so a malformed edit fails at startup.

Resolution rules live in services/permission_service.py:
(*, manage) > (resource, manage) > (resource, action)
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from practice_core.db.enums import Action, Role


WILDCARD_RESOURCE = "*"


@dataclass(frozen=True)
class Permission:
    """A (resource, action) grant."""
    resource: str
    action: Action

    @property
    def is_wildcard(self) -> bool:
        return self.resource == WILDCARD_RESOURCE and self.action == Action.MANAGE


def _p(resource: str, action: Action) -> Permission:
    return Permission(resource, action)


# =============================================================================
# Role -> Permission table
# =============================================================================

ROLE_PERMISSIONS: Mapping[Role, tuple[Permission, ...]] = MappingProxyType({
    Role.PLATFORM_ADMIN: (
        _p(WILDCARD_RESOURCE, Action.MANAGE),
    ),
    Role.TENANT_ADMIN: (
        _p("patients", Action.MANAGE),
        _p("appointments", Action.MANAGE),
        _p("staff", Action.MANAGE),
        _p("financial", Action.MANAGE),
        _p("reports", Action.MANAGE),
        _p("inventory", Action.MANAGE),
        _p("settings", Action.MANAGE),
        _p("notifications", Action.MANAGE),
    ),
    Role.CLINICIAN_FULL: (
        _p("patients", Action.MANAGE),
        _p("appointments", Action.MANAGE),
        _p("treatments", Action.MANAGE),
        _p("clinical_charts", Action.MANAGE),
        _p("prescriptions", Action.MANAGE),
        _p("reports", Action.READ),
        _p("inventory", Action.READ),
        _p("notifications", Action.CREATE),
    ),
    Role.CLINICIAN_LIMITED: (
        _p("patients", Action.READ),
        _p("patients", Action.UPDATE),
        _p("appointments", Action.READ),
        _p("appointments", Action.UPDATE),
        _p("clinical_charts", Action.UPDATE),
        _p("treatments", Action.CREATE),
        _p("inventory", Action.READ),
    ),
    Role.FRONT_DESK: (
        _p("patients", Action.CREATE),
        _p("patients", Action.READ),
        _p("patients", Action.UPDATE),  # Basic demographics only
        _p("appointments", Action.MANAGE),
        _p("financial", Action.CREATE),  # Payments
        _p("financial", Action.READ),
        _p("inventory", Action.READ),
        _p("notifications", Action.CREATE),
    ),
    Role.SUPPORT_ENGINEER: (
        _p("system_console", Action.MANAGE),
        _p("system_logs", Action.READ),
        _p("integrations", Action.MANAGE),
        _p("backups", Action.MANAGE),
        _p("monitoring", Action.READ),
        _p("settings", Action.READ),
    ),
    Role.PATIENT: (
        _p("patient_portal", Action.READ),
        _p("appointments", Action.CREATE),  # Self-booking
        _p("appointments", Action.READ),
        _p("medical_records", Action.READ),
        _p("billing", Action.READ),
    ),
})


# =============================================================================
# Sensitive features (gated by role membership, not by a single permission)
# =============================================================================

SENSITIVE_FEATURES: Mapping[str, frozenset[Role]] = MappingProxyType({
    "system-console": frozenset({Role.PLATFORM_ADMIN, Role.SUPPORT_ENGINEER}),
    "financial-reports": frozenset({Role.PLATFORM_ADMIN, Role.TENANT_ADMIN}),
    "staff-management": frozenset({Role.PLATFORM_ADMIN, Role.TENANT_ADMIN}),
    "system-settings": frozenset({Role.PLATFORM_ADMIN, Role.TENANT_ADMIN}),
    "audit-logs": frozenset({Role.PLATFORM_ADMIN, Role.SUPPORT_ENGINEER}),
    "multi-tenant": frozenset({Role.PLATFORM_ADMIN}),
    "integrations": frozenset({Role.PLATFORM_ADMIN, Role.SUPPORT_ENGINEER}),
    "patient-data-export": frozenset(
        {Role.PLATFORM_ADMIN, Role.TENANT_ADMIN, Role.CLINICIAN_FULL}
    ),
})


# =============================================================================
# Role hierarchy (only for "can administer" checks, never for permissions)
# =============================================================================

ROLE_HIERARCHY: Mapping[Role, int] = MappingProxyType({
    Role.PATIENT: 0,
    Role.FRONT_DESK: 1,
    Role.CLINICIAN_LIMITED: 2,
    Role.CLINICIAN_FULL: 3,
    Role.SUPPORT_ENGINEER: 3,  # Peer of clinician-full with a disjoint grant set
    Role.TENANT_ADMIN: 4,
    Role.PLATFORM_ADMIN: 5,
})

ROLE_DISPLAY_NAMES: Mapping[Role, str] = MappingProxyType({
    Role.PLATFORM_ADMIN: "Platform Administrator",
    Role.TENANT_ADMIN: "Clinic Administrator",
    Role.CLINICIAN_FULL: "Clinician",
    Role.CLINICIAN_LIMITED: "Clinical Assistant",
    Role.FRONT_DESK: "Front Desk",
    Role.SUPPORT_ENGINEER: "Support Engineer",
    Role.PATIENT: "Patient",
})


# =============================================================================
# Route registry
# =============================================================================

BASE_ROUTES: tuple[str, ...] = ("/dashboard",)

ROUTE_PERMISSIONS: Mapping[str, tuple[str, Action]] = MappingProxyType({
    "/patients": ("patients", Action.READ),
    "/appointments": ("appointments", Action.READ),
    "/services": ("treatments", Action.READ),
    "/financial": ("financial", Action.READ),
    "/inventory": ("inventory", Action.READ),
    "/staff": ("staff", Action.READ),
    "/reports": ("reports", Action.READ),
    "/settings": ("settings", Action.READ),
})

FEATURE_ROUTES: Mapping[str, str] = MappingProxyType({
    "/admin/console": "system-console",
    "/admin/audit": "audit-logs",
})

# Roles confined to a fixed route set regardless of their grants
PORTAL_ROUTES: Mapping[Role, tuple[str, ...]] = MappingProxyType({
    Role.PATIENT: ("/patient-portal",),
})


# =============================================================================
# Helper Functions
# =============================================================================

def get_role_permissions(role: Role) -> tuple[Permission, ...]:
    """Get the ordered grant set for a role (empty for unknown roles)."""
    return ROLE_PERMISSIONS.get(role, ())


def get_role_display_name(role: Role | str) -> str:
    """Human label for a role; unknown values are echoed back."""
    if isinstance(role, Role):
        return ROLE_DISPLAY_NAMES[role]
    if Role.has_value(role):
        return ROLE_DISPLAY_NAMES[Role(role)]
    return str(role)


def is_sensitive_feature(feature: str) -> bool:
    return feature in SENSITIVE_FEATURES


def validate_role_table(table: Mapping[Role, tuple[Permission, ...]]) -> None:
    """
    Check the static invariants of a role table.

    Raises:
        ValueError: a role is missing or has no grants, or more than
            one role holds the (*, manage) wildcard
    """
    missing = [role.value for role in Role if not table.get(role)]
    if missing:
        raise ValueError(f"Roles without permissions: {', '.join(missing)}")

    wildcard_holders = [
        role.value for role, perms in table.items() if any(p.is_wildcard for p in perms)
    ]
    if len(wildcard_holders) > 1:
        raise ValueError(
            f"Wildcard (*, manage) held by more than one role: {', '.join(wildcard_holders)}"
        )


validate_role_table(ROLE_PERMISSIONS)
