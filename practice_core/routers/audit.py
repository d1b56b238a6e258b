"""Audit router - API endpoints for viewing the audit trail."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from practice_core.core.deps import get_db, require_feature
from practice_core.db.enums import AuditAction
from practice_core.schemas.audit import AuditLogListResponse, AuditLogRead, ChainVerifyResponse
from practice_core.schemas.auth import UserContext
from practice_core.services import audit_service

router = APIRouter(prefix="/audit", tags=["Audit"])

AUDIT_FEATURE = "audit-logs"


@router.get("/", response_model=AuditLogListResponse)
def list_audit_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    action: AuditAction | None = Query(None, description="Filter by action"),
    actor_id: str | None = Query(None, description="Filter by actor"),
    start_date: datetime | None = Query(None, description="Filter events after this date"),
    end_date: datetime | None = Query(None, description="Filter events before this date"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_feature(AUDIT_FEATURE)),
) -> AuditLogListResponse:
    """
    List audit entries for the caller's tenant.

    Requires: audit-logs sensitive feature
    Filters: action, actor_id, date range
    """
    items, total = audit_service.list_audit_logs(
        db,
        user.tenant_id,
        page=page,
        per_page=per_page,
        action=action.value if action else None,
        actor_id=actor_id,
        start_date=start_date,
        end_date=end_date,
    )
    return AuditLogListResponse(
        items=[AuditLogRead.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/verify", response_model=ChainVerifyResponse)
def verify_audit_chain(
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_feature(AUDIT_FEATURE)),
) -> ChainVerifyResponse:
    """Recompute the tenant's hash chain and report the first broken entry."""
    broken_at = audit_service.verify_chain(db, user.tenant_id)
    return ChainVerifyResponse(valid=broken_at is None, broken_at=broken_at)
