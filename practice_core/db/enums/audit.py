"""Audit-related enums."""

from enum import Enum


class AuditAction(str, Enum):
    """What the actor did to the audited resource."""

    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    LOGIN = "login"
    LOGOUT = "logout"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AccessResult(str, Enum):
    """Outcome of an authorization guard evaluation."""

    GRANTED = "granted"
    ROLE_DENIED = "role_denied"
    PERMISSION_DENIED = "permission_denied"
    SENSITIVE_FEATURE_DENIED = "sensitive_feature_denied"

    @property
    def is_denial(self) -> bool:
        return self is not AccessResult.GRANTED
