"""Audit logging service - append-only trail of access decisions and data operations.

Writes are best-effort: AuditLogger.log never raises into business logic. A
failed write is logged locally and the record is dropped, so a denied
permission check stays denied even when the store is down.

Security guidelines:
- NEVER log secrets (API keys, tokens, passwords)
- Use IDs instead of raw record content in details
- IP: Trust X-Forwarded-For only behind a configured proxy
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from fastapi.requests import HTTPConnection
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, aliased, sessionmaker

from practice_core.core.config import settings
from practice_core.core.structured_logging import build_log_context
from practice_core.db.enums import AuditAction, RiskLevel
from practice_core.db.models import AuditLog
from practice_core.db.types import utcnow
from practice_core.schemas.audit import AuditRecordInput


logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
GENESIS_HASH = "0" * 64  # Chain start for every tenant


# =============================================================================
# Client identity
# =============================================================================

@dataclass(frozen=True)
class ClientIdentity:
    ip_address: str = UNKNOWN
    client_agent: str = UNKNOWN


class IdentityResolver(Protocol):
    def resolve(self) -> ClientIdentity: ...


def get_client_ip(request: HTTPConnection | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: HTTPConnection | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    # Truncate to 500 chars (DB limit)
    return ua[:500] if ua else None


class RequestIdentityResolver:
    """Resolve client identity from an inbound request or websocket."""

    def __init__(self, request: HTTPConnection | None):
        self._request = request

    def resolve(self) -> ClientIdentity:
        return ClientIdentity(
            ip_address=get_client_ip(self._request) or UNKNOWN,
            client_agent=get_user_agent(self._request) or UNKNOWN,
        )


class StaticIdentityResolver:
    """Fixed identity, for background jobs and tests."""

    def __init__(self, ip_address: str = UNKNOWN, client_agent: str = UNKNOWN):
        self._identity = ClientIdentity(ip_address, client_agent)

    def resolve(self) -> ClientIdentity:
        return self._identity


# =============================================================================
# Hash chain
# =============================================================================

def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_audit_hash(
    prev_hash: str,
    entry_id: str,
    tenant_id: str,
    action: str,
    created_at: str,
    details_json: str,
    actor_id: str = "",
    resource: str = "",
    resource_id: str = "",
    ip_address: str = "",
    client_agent: str = "",
    risk_level: str = "",
) -> str:
    """Hash = SHA256(all immutable fields joined with |)."""
    data = "|".join([
        prev_hash,
        entry_id,
        tenant_id,
        action,
        created_at,
        details_json,
        actor_id,
        resource,
        resource_id,
        ip_address,
        client_agent,
        risk_level,
    ])
    return hashlib.sha256(data.encode()).hexdigest()


def _hash_entry(entry: AuditLog, prev_hash: str) -> str:
    return compute_audit_hash(
        prev_hash=prev_hash,
        entry_id=str(entry.id),
        tenant_id=entry.tenant_id,
        action=entry.action,
        created_at=entry.created_at.isoformat(),
        details_json=canonical_json(entry.details),
        actor_id=entry.actor_id,
        resource=entry.resource,
        resource_id=entry.resource_id or "",
        ip_address=entry.ip_address,
        client_agent=entry.client_agent,
        risk_level=entry.risk_level,
    )


def get_last_audit_hash(db: Session, tenant_id: str) -> str:
    """
    Hash of the chain tip for a tenant.

    The tip is the entry no other entry points back to; created_at breaks
    ties left by a concurrent writer.
    """
    successor = aliased(AuditLog)
    result = db.execute(
        select(AuditLog.entry_hash)
        .outerjoin(
            successor,
            and_(
                successor.tenant_id == AuditLog.tenant_id,
                successor.prev_hash == AuditLog.entry_hash,
            ),
        )
        .where(AuditLog.tenant_id == tenant_id)
        .where(AuditLog.entry_hash.isnot(None))
        .where(successor.id.is_(None))
        .order_by(AuditLog.created_at.desc())
        .limit(1)
    ).scalar()
    return result or GENESIS_HASH


def verify_chain(db: Session, tenant_id: str) -> uuid.UUID | None:
    """
    Walk a tenant's chain from genesis and recompute every hash.

    Returns the id of the first entry that fails verification (bad hash or
    unreachable from genesis), or None when the chain is intact.
    """
    entries = db.execute(
        select(AuditLog).where(AuditLog.tenant_id == tenant_id).order_by(AuditLog.created_at)
    ).scalars().all()
    by_prev: dict[str | None, AuditLog] = {}
    for entry in entries:
        by_prev.setdefault(entry.prev_hash, entry)

    seen: set[uuid.UUID] = set()
    prev_hash = GENESIS_HASH
    while prev_hash in by_prev:
        entry = by_prev[prev_hash]
        if entry.id in seen:
            break
        if entry.entry_hash != _hash_entry(entry, prev_hash):
            return entry.id
        seen.add(entry.id)
        prev_hash = entry.entry_hash

    for entry in entries:
        if entry.id not in seen:
            return entry.id
    return None


# =============================================================================
# Writes
# =============================================================================

def append_record(
    db: Session,
    record: AuditRecordInput,
    identity: ClientIdentity,
    created_at: datetime,
) -> AuditLog:
    """Add one chained entry to the caller's transaction (no commit)."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    created_at = created_at.astimezone(timezone.utc)
    prev_hash = get_last_audit_hash(db, record.tenant_id)

    entry = AuditLog(
        id=uuid.uuid4(),
        tenant_id=record.tenant_id,
        actor_id=record.actor_id,
        action=record.action.value,
        resource=record.resource,
        resource_id=record.resource_id,
        details=record.details,
        ip_address=identity.ip_address,
        client_agent=identity.client_agent,
        risk_level=record.risk_level.value,
        created_at=created_at,
        prev_hash=prev_hash,
    )
    entry.entry_hash = _hash_entry(entry, prev_hash)
    db.add(entry)
    db.flush()  # Next append in this session must see the new tip
    return entry


class AuditLogger:
    """
    Fire-and-forget audit emitter.

    Each log() call resolves client identity, timestamps, assigns an id and
    appends through its own session in a single commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        identity_resolver: IdentityResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._identity_resolver = identity_resolver or StaticIdentityResolver()
        self._clock = clock

    def bind(self, identity_resolver: IdentityResolver) -> AuditLogger:
        """Same store and clock, different identity source (e.g. per request)."""
        return AuditLogger(self._session_factory, identity_resolver, self._clock)

    def _resolve_identity(self) -> ClientIdentity:
        try:
            return self._identity_resolver.resolve()
        except Exception:
            logger.warning("Client identity lookup failed; recording as unknown", exc_info=True)
            return ClientIdentity()

    def log(self, record: AuditRecordInput) -> None:
        identity = self._resolve_identity()
        try:
            with self._session_factory() as db:
                try:
                    append_record(db, record, identity, self._clock())
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
        except Exception:
            logger.exception(
                "Audit write failed; record dropped (%s/%s)",
                record.resource,
                record.action.value,
                extra=build_log_context(user_id=record.actor_id, tenant_id=record.tenant_id),
            )

    # -------------------------------------------------------------------------
    # Convenience wrappers (pre-fill resource and risk only)
    # -------------------------------------------------------------------------

    def log_record_access(
        self,
        actor_id: str,
        tenant_id: str,
        action: AuditAction,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Patient record access. Exports are high risk."""
        self.log(
            AuditRecordInput(
                actor_id=actor_id,
                tenant_id=tenant_id,
                action=action,
                resource="patient",
                resource_id=resource_id,
                details=details,
                risk_level=RiskLevel.HIGH if action == AuditAction.EXPORT else RiskLevel.MEDIUM,
            )
        )

    def log_financial_access(
        self,
        actor_id: str,
        tenant_id: str,
        action: AuditAction,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.log(
            AuditRecordInput(
                actor_id=actor_id,
                tenant_id=tenant_id,
                action=action,
                resource="financial",
                resource_id=resource_id,
                details=details,
                risk_level=RiskLevel.HIGH,
            )
        )

    def log_auth(
        self,
        actor_id: str,
        tenant_id: str,
        action: AuditAction,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Login is medium risk, logout low."""
        self.log(
            AuditRecordInput(
                actor_id=actor_id,
                tenant_id=tenant_id,
                action=action,
                resource="auth",
                details=details,
                risk_level=RiskLevel.MEDIUM if action == AuditAction.LOGIN else RiskLevel.LOW,
            )
        )


# =============================================================================
# Reads
# =============================================================================

def list_audit_logs(
    db: Session,
    tenant_id: str,
    page: int = 1,
    per_page: int = 50,
    action: str | None = None,
    actor_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> tuple[list[AuditLog], int]:
    """Paginated audit trail for one tenant, newest first."""
    query = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if action:
        query = query.where(AuditLog.action == action)
    if actor_id:
        query = query.where(AuditLog.actor_id == actor_id)
    if start_date:
        query = query.where(AuditLog.created_at >= start_date)
    if end_date:
        query = query.where(AuditLog.created_at <= end_date)

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    items = db.execute(
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).scalars().all()
    return list(items), total
