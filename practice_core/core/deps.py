"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from practice_core.context import AppContext
from practice_core.core.security import decode_session_token
from practice_core.db.enums import Action, Role
from practice_core.schemas.auth import UserContext
from practice_core.services import permission_service
from practice_core.services.audit_service import AuditLogger, RequestIdentityResolver
from practice_core.services.permission_service import AccessGuard


# Cookie and header names
COOKIE_NAME = "practice_session"


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(ctx: AppContext = Depends(get_app_context)) -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = ctx.session_factory()
    try:
        yield db
    finally:
        db.close()


def extract_token(request: Request) -> str | None:
    """Bearer token first, then the session cookie."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)


def user_from_token(token: str) -> UserContext:
    """
    Decode a session token into a UserContext.

    Raises:
        HTTPException 401: Invalid or expired token
        HTTPException 403: Unknown role
    """
    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session")

    role = payload.get("role", "")
    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{role}'. Contact administrator.",
        )
    if not payload.get("sub") or not payload.get("tenant_id"):
        raise HTTPException(status_code=401, detail="Invalid session")

    return permission_service.create_user_context(
        user_id=str(payload["sub"]),
        email=payload.get("email", ""),
        role=role,
        tenant_id=str(payload["tenant_id"]),
        display_name=payload.get("name", ""),
    )


def get_current_user(request: Request) -> UserContext:
    """
    Get the authenticated UserContext from bearer token or session cookie.

    This is the PRIMARY auth dependency for most endpoints.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Unknown role
    """
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_from_token(token)


def get_audit_logger(
    request: Request,
    ctx: AppContext = Depends(get_app_context),
) -> AuditLogger:
    """Audit logger bound to this request's client identity."""
    return ctx.audit.bind(RequestIdentityResolver(request))


def get_access_guard(audit: AuditLogger = Depends(get_audit_logger)) -> AccessGuard:
    return AccessGuard(audit)


def require_permission(resource: str, action: Action):
    """
    Dependency factory for (resource, action) authorization.

    Every evaluation is audited by the guard.

    Usage:
        @router.post("", dependencies=[Depends(require_permission("notifications", Action.CREATE))])
    """
    def dependency(
        request: Request,
        user: UserContext = Depends(get_current_user),
        guard: AccessGuard = Depends(get_access_guard),
    ) -> UserContext:
        decision = guard.evaluate(
            user, required_permission=(resource, action), pathname=request.url.path
        )
        if not decision.granted:
            raise HTTPException(status_code=403, detail=decision.detail)
        return user
    return dependency


def require_feature(feature: str):
    """Dependency factory for sensitive-feature gates."""
    def dependency(
        request: Request,
        user: UserContext = Depends(get_current_user),
        guard: AccessGuard = Depends(get_access_guard),
    ) -> UserContext:
        decision = guard.evaluate(user, sensitive_feature=feature, pathname=request.url.path)
        if not decision.granted:
            raise HTTPException(status_code=403, detail=decision.detail)
        return user
    return dependency
