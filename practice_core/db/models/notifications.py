"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Index, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from practice_core.db.base import Base


class Notification(Base):
    """
    Tenant-scoped notification.

    recipient_id NULL means broadcast to every member of the tenant.
    Expired rows stay in the table; reads filter them out.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notif_tenant_recipient_created", "tenant_id", "recipient_id", "created_at"),
        Index("idx_notif_scheduled_pending", "scheduled_for", "dispatched_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # NotificationKind
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    priority: Mapped[str] = mapped_column(String(10), nullable=False)  # Priority
    category: Mapped[str] = mapped_column(String(20), nullable=False)  # Category
    channels: Mapped[list] = mapped_column(JSON, nullable=False)  # list[Channel]
    actions: Mapped[list] = mapped_column(JSON, nullable=False)  # list[NotificationAction]

    is_read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    is_archived: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )

    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
