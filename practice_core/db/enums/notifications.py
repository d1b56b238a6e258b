"""Notification-related enums."""

from enum import Enum


class NotificationKind(str, Enum):
    """Presentation kind of a notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    APPOINTMENT = "appointment"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def is_interactive(self) -> bool:
        """High and urgent items raise an interactive alert on arrival."""
        return self in (Priority.HIGH, Priority.URGENT)


class Category(str, Enum):
    APPOINTMENT = "appointment"
    PAYMENT = "payment"
    SYSTEM = "system"
    MARKETING = "marketing"
    REMINDER = "reminder"
    ALERT = "alert"


class Channel(str, Enum):
    """
    Delivery channels.

    IN_APP is delivered through the read model and never has a sender.
    """

    IN_APP = "in-app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class ActionKind(str, Enum):
    NAVIGATE = "navigate"
    INVOKE_ENDPOINT = "invoke-endpoint"
    DISMISS = "dismiss"


class ActionStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"
