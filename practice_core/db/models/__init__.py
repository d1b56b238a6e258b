"""SQLAlchemy ORM models."""

from practice_core.db.models.audit import AuditLog
from practice_core.db.models.notifications import Notification

__all__ = ["AuditLog", "Notification"]
