"""
Notifications Router - /me/notifications endpoints plus creation.

Every endpoint scopes by the caller's tenant and id; the manager re-checks
the same scoping on its side.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from practice_core.context import AppContext
from practice_core.core.deps import get_app_context, get_current_user, require_permission
from practice_core.core.rate_limit import limiter
from practice_core.db.enums import Action, Category
from practice_core.schemas.auth import UserContext
from practice_core.schemas.notifications import (
    MutationResponse,
    NotificationCreate,
    NotificationIdsRequest,
    NotificationListResponse,
    NotificationRead,
    UnreadCountResponse,
)
from practice_core.services.notification_service import NotificationStoreError


router = APIRouter()
admin_router = APIRouter()


def _store_unavailable(e: NotificationStoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(e))


# =============================================================================
# Recipient endpoints
# =============================================================================


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    include_archived: bool = Query(False),
    category: Category | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    """List the caller's visible notifications, newest first."""
    manager = ctx.notifications
    try:
        items = manager.list(
            user.id,
            user.tenant_id,
            limit=limit,
            include_read=not unread_only,
            include_archived=include_archived,
            category=category,
        )
        unread = manager.unread_count(user.id, user.tenant_id)
    except NotificationStoreError as e:
        raise _store_unavailable(e)
    return NotificationListResponse(items=items, unread_count=unread)


@router.get("/notifications/count", response_model=UnreadCountResponse)
def get_unread_count(
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    """Unread count only (for polling)."""
    try:
        return UnreadCountResponse(count=ctx.notifications.unread_count(user.id, user.tenant_id))
    except NotificationStoreError as e:
        raise _store_unavailable(e)


@router.post("/notifications/read", response_model=MutationResponse)
def mark_notifications_read(
    body: NotificationIdsRequest,
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    try:
        updated = ctx.notifications.mark_read(body.ids, user.id, user.tenant_id)
    except NotificationStoreError as e:
        raise _store_unavailable(e)
    return MutationResponse(updated=updated)


@router.post("/notifications/archive", response_model=MutationResponse)
def archive_notifications(
    body: NotificationIdsRequest,
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    try:
        updated = ctx.notifications.mark_archived(body.ids, user.id, user.tenant_id)
    except NotificationStoreError as e:
        raise _store_unavailable(e)
    return MutationResponse(updated=updated)


@router.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: UUID,
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    try:
        deleted = ctx.notifications.delete(notification_id, user.id, user.tenant_id)
    except NotificationStoreError as e:
        raise _store_unavailable(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")


# =============================================================================
# Creation (staff)
# =============================================================================


@admin_router.post("", response_model=NotificationRead, status_code=201)
@limiter.limit("30/minute")
def create_notification(
    request: Request,
    body: NotificationCreate,
    user: UserContext = Depends(require_permission("notifications", Action.CREATE)),
    ctx: AppContext = Depends(get_app_context),
):
    """Create a notification in the caller's tenant. tenant_id in the body is ignored."""
    payload = body.model_copy(update={"tenant_id": user.tenant_id})
    try:
        return ctx.notifications.create(payload)
    except NotificationStoreError as e:
        raise _store_unavailable(e)
