"""
WebSocket router for real-time notifications and session lifecycle.

/ws/notifications pushes the caller's full notification list whenever it
changes. /ws/session runs the inactivity clock server-side for one browsing
context: the client reports activity and visibility, the server sends
heartbeat, warning and timeout frames.

Both endpoints authenticate via ?token=... or the session cookie.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

import anyio
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from practice_core.context import AppContext
from practice_core.core.deps import COOKIE_NAME, user_from_token
from practice_core.core.security import decode_session_token
from practice_core.core.structured_logging import connection_log_context
from practice_core.schemas.auth import UserContext
from practice_core.schemas.notifications import NotificationRead
from practice_core.services.audit_service import RequestIdentityResolver
from practice_core.services.session_service import (
    ActivityChannel,
    AsyncioScheduler,
    ClientEvent,
    SessionLifecycleManager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

# Close codes
CLOSE_AUTH_FAILED = 4001
CLOSE_SESSION_TIMEOUT = 4008


async def _authenticate(websocket: WebSocket, token: str | None) -> tuple[UserContext, dict] | None:
    """Resolve the caller or close the socket. Returns (user, token payload)."""
    token = token or websocket.cookies.get(COOKIE_NAME)
    if not token:
        await websocket.close(code=CLOSE_AUTH_FAILED, reason="Authentication required")
        return None
    try:
        user = user_from_token(token)
        payload = decode_session_token(token)
    except HTTPException:
        await websocket.close(code=CLOSE_AUTH_FAILED, reason="Invalid token")
        return None
    return user, payload


# =============================================================================
# Notifications
# =============================================================================

@router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """
    Server pushes {"type": "notifications", "data": [...]} on connect and
    after every change that may affect the caller. "ping" gets "pong".
    """
    auth = await _authenticate(websocket, token)
    if auth is None:
        return
    user, _ = auth
    ctx: AppContext = websocket.app.state.context

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[list[NotificationRead]] = asyncio.Queue()

    def on_change(items: list[NotificationRead]) -> None:
        # Called from whichever thread committed the change
        loop.call_soon_threadsafe(queue.put_nowait, items)

    unsubscribe = await anyio.to_thread.run_sync(
        ctx.notifications.subscribe, user.id, user.tenant_id, on_change
    )

    async def pump() -> None:
        while True:
            items = await queue.get()
            await websocket.send_json(
                {"type": "notifications", "data": [item.model_dump(mode="json") for item in items]}
            )

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        pump_task.cancel()
        unsubscribe()


# =============================================================================
# Session lifecycle
# =============================================================================

class _SocketHeartbeat:
    """Heartbeat transport that pings the client over the open socket."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket

    async def ping(self) -> None:
        await self._websocket.send_json({"type": "heartbeat"})


@router.websocket("/session")
async def websocket_session(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """
    Client messages: "activity", "hidden", "visible", "extend", "logout".

    Server messages:
    - {"type": "heartbeat"} every heartbeat interval while visible
    - {"type": "session_warning", "remaining": seconds}
    - {"type": "session_timeout"} followed by close 4008

    Shared-store reads and writes and audit records run on a per-socket
    worker thread, never on the event loop.
    """
    auth = await _authenticate(websocket, token)
    if auth is None:
        return
    user, payload = auth
    ctx: AppContext = websocket.app.state.context
    session_id = payload.get("sid") or f"{user.tenant_id}:{user.id}"

    await websocket.accept()
    outbox: asyncio.Queue[dict | None] = asyncio.Queue()
    channel = ActivityChannel()
    io_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="session-io")
    log_context = connection_log_context(websocket, user, session_id=session_id)
    logger.info("Session socket opened", extra=log_context)

    def on_warning(remaining: float) -> None:
        outbox.put_nowait({"type": "session_warning", "remaining": int(remaining)})

    def on_timeout() -> None:
        logger.info("Session timed out", extra=log_context)
        outbox.put_nowait({"type": "session_timeout"})
        outbox.put_nowait(None)

    def on_extend() -> None:
        outbox.put_nowait({"type": "session_extended"})

    manager = SessionLifecycleManager(
        policy=ctx.session_policy,
        store=ctx.activity_store(session_id),
        scheduler=AsyncioScheduler(),
        heartbeat=_SocketHeartbeat(websocket),
        activity_source=channel,
        on_warning=on_warning,
        on_timeout=on_timeout,
        on_extend=on_extend,
        audit=ctx.audit.bind(RequestIdentityResolver(websocket)),
        user=user,
        io_executor=io_executor,
    ).start()

    async def pump() -> None:
        while True:
            message = await outbox.get()
            if message is None:
                await websocket.close(code=CLOSE_SESSION_TIMEOUT, reason="Session timed out")
                return
            await websocket.send_json(message)

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            data = (await websocket.receive_text()).strip().lower()
            if data == "extend":
                manager.extend()
            elif data == "logout":
                logger.info("Session logout over socket", extra=log_context)
                manager.destroy()
                # The logout record is written before the client sees the close
                await anyio.to_thread.run_sync(io_executor.shutdown)
                await websocket.close()
                break
            elif data == "ping":
                await websocket.send_text("pong")
            elif ClientEvent.has_value(data):
                channel.emit(data)
            else:
                logger.debug("Ignoring unknown session message %r", data)
    except WebSocketDisconnect:
        pass
    finally:
        pump_task.cancel()
        # Other tabs may still be active; leave the shared timestamp alone
        manager.detach()
        # Drain queued writes, including the logout audit record
        await anyio.to_thread.run_sync(io_executor.shutdown)
