"""Structured logging helpers (PHI-safe).

Log ``extra`` dicts carry identifiers only: who (user, tenant), what
(session, notification, channel) and where (route, method, request id).
Notification titles and messages and audit details never go into a log context.
"""

from typing import Any

from starlette.requests import HTTPConnection

REQUEST_ID_HEADER = "X-Request-ID"


def _scalar(value: Any) -> Any:
    # Enums log by value, UUIDs as text
    value = getattr(value, "value", value)
    return value if isinstance(value, (str, int, float)) else str(value)


def build_log_context(
    *,
    user_id: str | None = None,
    tenant_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
    session_id: str | None = None,
    notification_id: Any = None,
    channel: Any = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict. Empty fields are dropped."""
    fields = {
        "user_id": user_id,
        "tenant_id": tenant_id,
        "request_id": request_id,
        "route": route,
        "method": method,
        "session_id": session_id,
        "notification_id": notification_id,
        "channel": channel,
    }
    return {key: _scalar(value) for key, value in fields.items() if value}


def connection_log_context(connection: HTTPConnection, user: Any = None, **fields: Any) -> dict[str, Any]:
    """
    build_log_context pre-filled from an HTTP request or websocket.

    ``user`` is anything with ``id`` and ``tenant_id`` (a UserContext).
    Websockets have no method; they log as "WS".
    """
    method = connection.scope.get("method")
    if method is None and connection.scope.get("type") == "websocket":
        method = "WS"
    return build_log_context(
        user_id=getattr(user, "id", None),
        tenant_id=getattr(user, "tenant_id", None),
        request_id=connection.headers.get(REQUEST_ID_HEADER),
        route=connection.url.path,
        method=method,
        **fields,
    )
