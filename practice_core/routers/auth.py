"""Auth Router - session liveness, identity and logout."""

import logging

from fastapi import APIRouter, Depends, Request, Response

from practice_core.context import AppContext
from practice_core.core.config import settings
from practice_core.core.deps import COOKIE_NAME, get_app_context, get_audit_logger, get_current_user
from practice_core.core.permissions import get_role_display_name
from practice_core.core.structured_logging import connection_log_context
from practice_core.db.enums import AuditAction
from practice_core.db.types import utcnow
from practice_core.schemas.auth import MeResponse, SessionPolicyRead, UserContext
from practice_core.services.audit_service import AuditLogger


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/heartbeat")
def heartbeat(user: UserContext = Depends(get_current_user)):
    """Liveness ping sent by active, visible sessions."""
    return {"status": "ok", "server_time": utcnow().isoformat()}


@router.get("/me", response_model=MeResponse)
def me(user: UserContext = Depends(get_current_user)):
    return MeResponse(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        role_label=get_role_display_name(user.role),
        tenant_id=user.tenant_id,
        accessible_routes=list(user.accessible_routes),
    )


@router.get("/session-policy", response_model=SessionPolicyRead)
def session_policy(
    user: UserContext = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
):
    policy = ctx.session_policy
    return SessionPolicyRead(
        timeout=int(policy.timeout),
        warning_window=int(policy.warning_window),
        heartbeat_interval=int(policy.heartbeat_interval),
        enable_warning=policy.enable_warning,
    )


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    user: UserContext = Depends(get_current_user),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Record the logout and clear the session cookie."""
    audit.log_auth(user.id, user.tenant_id, AuditAction.LOGOUT, {"reason": "logout"})
    logger.info("User logged out", extra=connection_log_context(request, user))
    response.delete_cookie(COOKIE_NAME, secure=settings.cookie_secure, httponly=True, samesite="lax")
    return {"status": "logged_out"}
