"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Practice roles, closed set.

    - PLATFORM_ADMIN: Cross-tenant operator (holds the wildcard grant)
    - TENANT_ADMIN: Full clinic access, staff management
    - CLINICIAN_FULL: Full patient care, limited admin
    - CLINICIAN_LIMITED: Limited patient care
    - FRONT_DESK: Appointments, basic patient info, payments
    - SUPPORT_ENGINEER: Technical support, integrations, system logs
    - PATIENT: Patient portal only
    """

    PLATFORM_ADMIN = "platform-admin"
    TENANT_ADMIN = "tenant-admin"
    CLINICIAN_FULL = "clinician-full"
    CLINICIAN_LIMITED = "clinician-limited"
    FRONT_DESK = "front-desk"
    SUPPORT_ENGINEER = "support-engineer"
    PATIENT = "patient"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class Action(str, Enum):
    """Permission actions. MANAGE subsumes the others on the same resource."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_
