"""Audit schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from practice_core.db.enums import AuditAction, RiskLevel


class AuditRecordInput(BaseModel):
    """Caller-supplied part of an audit record; identity and time are filled in."""
    actor_id: str
    tenant_id: str
    action: AuditAction
    resource: str
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    risk_level: RiskLevel = RiskLevel.LOW


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    actor_id: str
    action: str
    resource: str
    resource_id: str | None
    details: dict[str, Any] | None
    ip_address: str
    client_agent: str
    risk_level: str
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogRead]
    total: int
    page: int
    per_page: int


class ChainVerifyResponse(BaseModel):
    valid: bool
    broken_at: UUID | None = None
