"""Session lifecycle adapter: timers, heartbeat, listeners and shared storage.

SessionLifecycleManager feeds events into session_lifecycle.reduce and
interprets the effects it returns. All I/O lives here so the state machine
itself stays pure.

Usage:
    manager = start_session(
        policy=session_policy_from_settings(settings),
        store=InMemoryActivityStore(activity_key(session_id)),
        heartbeat=HttpHeartbeatTransport("https://api.example/auth/heartbeat"),
        on_warning=show_dialog,
        on_timeout=wipe_credentials,
    )
    manager.extend()    # user confirmed the warning
    manager.destroy()   # explicit logout
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import replace
from enum import Enum
from typing import Awaitable, Callable, Protocol

import httpx

from practice_core.db.enums import AuditAction
from practice_core.schemas.auth import UserContext
from practice_core.services.activity_store import SharedActivityStore
from practice_core.services.audit_service import AuditLogger
from practice_core.services.session_lifecycle import (
    Activity,
    CancelTimers,
    ClearShared,
    Destroy,
    Effect,
    Event,
    Extend,
    ExpiryDue,
    FireExtend,
    FireTimeout,
    FireWarning,
    RegisterListeners,
    RemoveListeners,
    ScheduleTimers,
    SessionPhase,
    SessionPolicy,
    SessionState,
    Start,
    StartHeartbeat,
    StopHeartbeat,
    VisibilityHidden,
    VisibilityVisible,
    WarningDue,
    WriteShared,
    reduce,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Collaborator contracts
# =============================================================================

class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...

    def spawn(self, coro_factory: Callable[[], Awaitable[None]]) -> None: ...


class HeartbeatTransport(Protocol):
    async def ping(self) -> None: ...


class ClientEvent(str, Enum):
    """Input signals a browsing context reports."""
    ACTIVITY = "activity"  # pointer, key, scroll, touch
    HIDDEN = "hidden"
    VISIBLE = "visible"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


# =============================================================================
# Default implementations
# =============================================================================

class _RepeatingHandle:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callable[[], None]):
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._tick)

    def _tick(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._tick)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class AsyncioScheduler:
    """Scheduler over an asyncio event loop (the running loop by default)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._loop.call_later(max(0.0, delay), callback)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return _RepeatingHandle(self._loop, interval, callback)

    def spawn(self, coro_factory: Callable[[], Awaitable[None]]) -> None:
        task = self._loop.create_task(coro_factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class HttpHeartbeatTransport:
    """POSTs to a liveness endpoint. Non-2xx responses raise."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 5.0,
    ):
        self._url = url
        self._client = client
        self._headers = headers or {}
        self._timeout = timeout

    async def ping(self) -> None:
        if self._client is not None:
            response = await self._client.post(self._url, headers=self._headers)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, headers=self._headers)
            response.raise_for_status()


class ActivityChannel:
    """
    In-process event stream of client signals.

    The session manager subscribes on RegisterListeners and unsubscribes on
    RemoveListeners; producers (a websocket reader, a UI shell) call emit().
    """

    def __init__(self):
        self._listeners: list[Callable[[ClientEvent], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[ClientEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: ClientEvent | str) -> None:
        event = ClientEvent(event)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


# =============================================================================
# Manager
# =============================================================================

class SessionLifecycleManager:
    """
    One instance per browsing context. Terminal after timeout or destroy();
    build a new instance for a new session.

    With an io_executor, shared-store and audit I/O runs on that executor
    instead of the scheduler thread. A single-worker executor keeps writes and
    reads in submission order. Reads then complete through scheduler.spawn.
    """

    def __init__(
        self,
        *,
        policy: SessionPolicy,
        store: SharedActivityStore,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.time,
        heartbeat: HeartbeatTransport | None = None,
        activity_source: ActivityChannel | None = None,
        on_warning: Callable[[float], None] | None = None,
        on_timeout: Callable[[], None] | None = None,
        on_extend: Callable[[], None] | None = None,
        audit: AuditLogger | None = None,
        user: UserContext | None = None,
        io_executor: Executor | None = None,
    ):
        self.policy = policy
        self._store = store
        self._scheduler = scheduler
        self._clock = clock
        self._heartbeat = heartbeat
        self._activity_source = activity_source
        self._on_warning = on_warning
        self._on_timeout = on_timeout
        self._on_extend = on_extend
        self._audit = audit
        self._user = user
        self._io_executor = io_executor

        self._state = SessionState()
        self._warning_timer: TimerHandle | None = None
        self._expiry_timer: TimerHandle | None = None
        self._heartbeat_timer: TimerHandle | None = None
        self._unsubscribe_source: Callable[[], None] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    # -------------------------------------------------------------------------
    # Public handle
    # -------------------------------------------------------------------------

    def start(self) -> SessionLifecycleManager:
        self._dispatch(Start(self._clock()))
        return self

    def record_activity(self) -> None:
        self._dispatch(Activity(self._clock()))

    def extend(self) -> None:
        """Same as activity, plus the extend callback. Used after a warning."""
        self._dispatch(Extend(self._clock()))

    def set_visibility(self, visible: bool) -> None:
        if visible:
            self._reconcile(VisibilityVisible)
        else:
            self._dispatch(VisibilityHidden())

    def destroy(self) -> None:
        """Explicit logout. Idempotent."""
        if self._state.phase.is_live and self._audit is not None and self._user is not None:
            self._log_logout("logout")
        self._dispatch(Destroy())

    def detach(self) -> None:
        """
        Stop this context's timers without ending the session.

        For a closed tab: other contexts keep using the shared value, so the
        shared key is left in place.
        """
        if not self._state.phase.is_live:
            return
        self._state = replace(self._state, phase=SessionPhase.DESTROYED)
        for effect in (CancelTimers(), StopHeartbeat(), RemoveListeners()):
            self._apply(effect)

    # -------------------------------------------------------------------------
    # Event loop
    # -------------------------------------------------------------------------

    def _dispatch(self, event: Event) -> None:
        self._state, effects = reduce(self._state, event, self.policy)
        for effect in effects:
            self._apply(effect)

    def _read_shared(self) -> float | None:
        try:
            return self._store.get()
        except Exception:
            # Read failure reconciles against local state
            logger.warning("Shared activity read failed", exc_info=True)
            return self._state.last_activity

    def _reconcile(self, event_type: Callable[[float, float | None], Event]) -> None:
        """Dispatch a timer or resume event carrying the current shared value."""
        if self._io_executor is None:
            self._dispatch(event_type(self._clock(), self._read_shared()))
            return

        async def _read_then_dispatch() -> None:
            try:
                shared = await asyncio.wrap_future(self._io_executor.submit(self._store.get))
            except Exception:
                logger.warning("Shared activity read failed", exc_info=True)
                shared = self._state.last_activity
            self._dispatch(event_type(self._clock(), shared))

        self._scheduler.spawn(_read_then_dispatch)

    def _run_io(self, label: str, fn: Callable[..., None], *args) -> None:
        if self._io_executor is None:
            self._guarded_io(label, fn, *args)
            return
        try:
            self._io_executor.submit(self._guarded_io, label, fn, *args)
        except RuntimeError:
            logger.warning("Session %s dropped: I/O executor is shut down", label)

    @staticmethod
    def _guarded_io(label: str, fn: Callable[..., None], *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.warning("Session %s failed", label, exc_info=True)

    def _log_logout(self, reason: str) -> None:
        self._run_io(
            "audit write",
            self._audit.log_auth,
            self._user.id,
            self._user.tenant_id,
            AuditAction.LOGOUT,
            {"reason": reason},
        )

    def _on_source_event(self, event: ClientEvent) -> None:
        if event is ClientEvent.ACTIVITY:
            self.record_activity()
        elif event is ClientEvent.HIDDEN:
            self.set_visibility(False)
        elif event is ClientEvent.VISIBLE:
            self.set_visibility(True)

    def _warning_due(self) -> None:
        self._warning_timer = None
        self._reconcile(WarningDue)

    def _expiry_due(self) -> None:
        self._expiry_timer = None
        self._reconcile(ExpiryDue)

    def _heartbeat_tick(self) -> None:
        if self._heartbeat is not None:
            self._scheduler.spawn(self._send_heartbeat)

    async def _send_heartbeat(self) -> None:
        try:
            await self._heartbeat.ping()
        except Exception:
            # Heartbeat failure never ends the session
            logger.warning("Session heartbeat failed", exc_info=True)

    def _cancel_timers(self) -> None:
        for timer in (self._warning_timer, self._expiry_timer):
            if timer is not None:
                timer.cancel()
        self._warning_timer = None
        self._expiry_timer = None

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, ScheduleTimers):
            self._cancel_timers()
            now = self._clock()
            if effect.warning_at is not None:
                self._warning_timer = self._scheduler.call_later(
                    effect.warning_at - now, self._warning_due
                )
            self._expiry_timer = self._scheduler.call_later(effect.expiry_at - now, self._expiry_due)

        elif isinstance(effect, CancelTimers):
            self._cancel_timers()

        elif isinstance(effect, StartHeartbeat):
            if self._heartbeat_timer is None and self._heartbeat is not None:
                self._heartbeat_timer = self._scheduler.call_every(
                    self.policy.heartbeat_interval, self._heartbeat_tick
                )

        elif isinstance(effect, StopHeartbeat):
            if self._heartbeat_timer is not None:
                self._heartbeat_timer.cancel()
                self._heartbeat_timer = None

        elif isinstance(effect, WriteShared):
            self._run_io("shared activity write", self._store.set, effect.last_activity)

        elif isinstance(effect, ClearShared):
            self._run_io("shared activity clear", self._store.clear)

        elif isinstance(effect, RegisterListeners):
            if self._activity_source is not None and self._unsubscribe_source is None:
                self._unsubscribe_source = self._activity_source.subscribe(self._on_source_event)

        elif isinstance(effect, RemoveListeners):
            if self._unsubscribe_source is not None:
                self._unsubscribe_source()
                self._unsubscribe_source = None

        elif isinstance(effect, FireWarning):
            self._invoke("warning", self._on_warning, effect.remaining)

        elif isinstance(effect, FireExtend):
            self._invoke("extend", self._on_extend)

        elif isinstance(effect, FireTimeout):
            if self._audit is not None and self._user is not None:
                self._log_logout("timeout")
            self._invoke("timeout", self._on_timeout)

    @staticmethod
    def _invoke(name: str, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Session %s callback raised", name)


def start_session(
    *,
    policy: SessionPolicy,
    store: SharedActivityStore,
    scheduler: Scheduler | None = None,
    clock: Callable[[], float] = time.time,
    heartbeat: HeartbeatTransport | None = None,
    activity_source: ActivityChannel | None = None,
    on_warning: Callable[[float], None] | None = None,
    on_timeout: Callable[[], None] | None = None,
    on_extend: Callable[[], None] | None = None,
    audit: AuditLogger | None = None,
    user: UserContext | None = None,
    io_executor: Executor | None = None,
) -> SessionLifecycleManager:
    """Build and start a manager. Needs a running loop unless a scheduler is given."""
    manager = SessionLifecycleManager(
        policy=policy,
        store=store,
        scheduler=scheduler or AsyncioScheduler(),
        clock=clock,
        heartbeat=heartbeat,
        activity_source=activity_source,
        on_warning=on_warning,
        on_timeout=on_timeout,
        on_extend=on_extend,
        audit=audit,
        user=user,
        io_executor=io_executor,
    )
    return manager.start()
