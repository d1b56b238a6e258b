"""Session token (JWT) helpers."""

import uuid
from datetime import datetime, timedelta, timezone

import jwt

from practice_core.core.config import settings


def create_session_token(
    user_id: str,
    tenant_id: str,
    role: str,
    email: str = "",
    name: str = "",
    session_id: str | None = None,
) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET). sid identifies the
    browsing session for shared activity tracking.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "role": role,
        "email": email,
        "name": name,
        "sid": session_id or uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore
