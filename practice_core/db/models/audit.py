"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from practice_core.db.base import Base


class AuditLog(Base):
    """
    Append-only trail of access decisions and data operations.

    Security:
    - Never stores secrets/tokens
    - details carries IDs, never raw record content
    - Hash chain (per tenant) makes tampering detectable
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_tenant_created", "tenant_id", "created_at"),
        Index("idx_audit_tenant_action_created", "tenant_id", "action", "created_at"),
        Index("idx_audit_tenant_actor_created", "tenant_id", "actor_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[str] = mapped_column(String(20), nullable=False)  # AuditAction
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Client identity (best-effort, "unknown" when unresolvable)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    client_agent: Mapped[str] = mapped_column(String(500), nullable=False)

    risk_level: Mapped[str] = mapped_column(String(10), nullable=False)  # RiskLevel
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # Tamper-evident chain
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
