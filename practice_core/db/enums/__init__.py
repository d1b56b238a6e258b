"""Enum re-exports."""

from practice_core.db.enums.audit import AccessResult, AuditAction, RiskLevel
from practice_core.db.enums.auth import Action, Role
from practice_core.db.enums.notifications import (
    ActionKind,
    ActionStyle,
    Category,
    Channel,
    NotificationKind,
    Priority,
)

__all__ = [
    "AccessResult",
    "Action",
    "ActionKind",
    "ActionStyle",
    "AuditAction",
    "Category",
    "Channel",
    "NotificationKind",
    "Priority",
    "RiskLevel",
    "Role",
]
