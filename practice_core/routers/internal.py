"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from practice_core.context import AppContext
from practice_core.core.config import settings
from practice_core.core.deps import get_app_context
from practice_core.services.notification_service import NotificationStoreError


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not hmac.compare_digest(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class DispatchResponse(BaseModel):
    dispatched: int


@router.post(
    "/notifications",
    response_model=DispatchResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def dispatch_scheduled_notifications(ctx: AppContext = Depends(get_app_context)):
    """Send every scheduled notification whose time has come."""
    try:
        return DispatchResponse(dispatched=ctx.notifications.dispatch_due())
    except NotificationStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
