"""Notification schemas."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from practice_core.db.enums import (
    ActionKind,
    ActionStyle,
    Category,
    Channel,
    NotificationKind,
    Priority,
)


class NotificationAction(BaseModel):
    """Button attached to a notification. Immutable once attached."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    kind: ActionKind
    target: str | None = None
    style: ActionStyle = ActionStyle.PRIMARY


class NotificationCreate(BaseModel):
    tenant_id: str
    recipient_id: str | None = None  # None = tenant broadcast
    kind: NotificationKind = NotificationKind.INFO
    title: str = Field(min_length=1, max_length=255)
    message: str
    data: dict[str, Any] | None = None
    priority: Priority = Priority.MEDIUM
    category: Category = Category.SYSTEM
    channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP])
    actions: list[NotificationAction] = Field(default_factory=list)
    expires_at: datetime | None = None
    scheduled_for: datetime | None = None

    @field_validator("expires_at", "scheduled_for")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    recipient_id: str | None
    kind: NotificationKind
    title: str
    message: str
    data: dict[str, Any] | None
    priority: Priority
    category: Category
    channels: list[Channel]
    actions: list[NotificationAction]
    is_read: bool
    is_archived: bool
    expires_at: datetime | None
    scheduled_for: datetime | None
    dispatched_at: datetime | None
    created_at: datetime
    updated_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    unread_count: int


class UnreadCountResponse(BaseModel):
    """Unread count only (for polling)."""
    count: int


class NotificationIdsRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1, max_length=500)


class MutationResponse(BaseModel):
    updated: int
