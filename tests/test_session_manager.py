"""Tests for SessionLifecycleManager driven by a manual scheduler."""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
from sqlalchemy import select

from practice_core.db.enums import AuditAction, Role
from practice_core.db.models import AuditLog
from practice_core.services import permission_service
from practice_core.services.activity_store import InMemoryActivityStore, activity_key
from practice_core.services.audit_service import AuditLogger
from practice_core.services.session_lifecycle import SessionPhase, SessionPolicy
from practice_core.services.session_service import (
    ActivityChannel,
    AsyncioScheduler,
    HttpHeartbeatTransport,
    SessionLifecycleManager,
)


POLICY = SessionPolicy(timeout=600, warning_window=120, heartbeat_interval=30)
KEY = activity_key("sid-1")


def _manager(clock, scheduler, store=None, **kwargs) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        policy=kwargs.pop("policy", POLICY),
        store=store if store is not None else InMemoryActivityStore(KEY),
        scheduler=scheduler,
        clock=clock,
        **kwargs,
    )


class RecordingHeartbeat:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.pings = 0

    async def ping(self) -> None:
        self.pings += 1
        if self.fail:
            raise httpx.ConnectError("liveness endpoint down")


# =============================================================================
# Warning and timeout
# =============================================================================

def test_warning_then_timeout(clock, scheduler):
    warnings, timeouts = [], []
    store = InMemoryActivityStore(KEY)
    manager = _manager(
        clock, scheduler, store, on_warning=warnings.append, on_timeout=lambda: timeouts.append(1)
    ).start()
    assert store.get() == clock.now

    scheduler.advance(480)
    assert warnings == [120]
    assert manager.phase is SessionPhase.WARNED

    scheduler.advance(120)
    assert timeouts == [1]
    assert manager.phase is SessionPhase.EXPIRED
    assert store.get() is None
    assert scheduler.pending() == []


def test_warning_fires_only_once_per_idle_period(clock, scheduler):
    warnings = []
    manager = _manager(clock, scheduler, on_warning=warnings.append).start()
    scheduler.advance(500)
    manager.record_activity()
    scheduler.advance(500)
    assert len(warnings) == 2  # Re-armed by the activity in between


def test_extend_after_warning(clock, scheduler):
    extended = []
    manager = _manager(clock, scheduler, on_extend=lambda: extended.append(1)).start()
    scheduler.advance(490)
    manager.extend()
    assert extended == [1]
    assert manager.phase is SessionPhase.ACTIVE
    scheduler.advance(599)
    assert manager.phase is SessionPhase.WARNED


def test_timeout_audits_logout(clock, scheduler, session_factory):
    user = permission_service.create_user_context(
        user_id="u-1", email="", role=Role.FRONT_DESK, tenant_id="clinic-1", display_name=""
    )
    manager = _manager(clock, scheduler, audit=AuditLogger(session_factory), user=user).start()
    scheduler.advance(600)
    assert manager.phase is SessionPhase.EXPIRED

    with session_factory() as db:
        (record,) = db.execute(select(AuditLog)).scalars().all()
    assert record.action == AuditAction.LOGOUT.value
    assert record.details == {"reason": "timeout"}


# =============================================================================
# Cross-tab consistency
# =============================================================================

def test_other_tab_activity_keeps_session_alive(clock, scheduler):
    backing: dict[str, float] = {}
    tab_a = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing)).start()
    tab_b = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing)).start()

    scheduler.advance(599)
    tab_b.record_activity()  # One second before A's deadline

    scheduler.advance(1)
    assert tab_a.phase is SessionPhase.ACTIVE
    assert tab_a.state.last_activity == tab_b.state.last_activity

    scheduler.advance(598)
    assert tab_a.phase.is_live
    scheduler.advance(1)
    assert tab_a.phase is SessionPhase.EXPIRED
    assert tab_b.phase is SessionPhase.EXPIRED


def test_resume_after_other_tab_logged_out(clock, scheduler):
    backing: dict[str, float] = {}
    tab_a = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing)).start()
    tab_b = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing)).start()

    tab_a.set_visibility(False)
    tab_b.destroy()
    assert KEY not in backing

    tab_a.set_visibility(True)
    assert tab_a.phase is SessionPhase.EXPIRED


def test_resume_after_long_hidden_period_expires(clock, scheduler):
    timeouts = []
    manager = _manager(clock, scheduler, on_timeout=lambda: timeouts.append(1)).start()
    manager.set_visibility(False)
    # Timers are throttled while hidden; simulate the wall clock moving alone
    clock.advance(601)
    manager.set_visibility(True)
    assert timeouts == [1]


@pytest.mark.parametrize(
    "hidden_for, expected",
    [(599, SessionPhase.ACTIVE), (601, SessionPhase.EXPIRED)],
)
def test_hidden_tab_resumes_against_shared_activity(clock, scheduler, hidden_for, expected):
    policy = SessionPolicy(timeout=600, heartbeat_interval=30, enable_warning=False)
    backing: dict[str, float] = {}
    tab_a = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing), policy=policy).start()
    tab_b = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing), policy=policy).start()

    tab_b.set_visibility(False)
    clock.advance(hidden_for)  # Hidden tabs get no timer callbacks
    tab_b.set_visibility(True)
    assert tab_b.phase is expected
    assert tab_a.phase is SessionPhase.ACTIVE

    # Both tabs are past t0 + timeout once the remaining timers run
    scheduler.advance(2)
    assert tab_a.phase is SessionPhase.EXPIRED
    assert tab_b.phase is SessionPhase.EXPIRED
    assert KEY not in backing


def test_detach_leaves_shared_activity(clock, scheduler):
    backing: dict[str, float] = {}
    manager = _manager(clock, scheduler, InMemoryActivityStore(KEY, backing)).start()
    manager.detach()
    assert manager.phase is SessionPhase.DESTROYED
    assert KEY in backing
    assert scheduler.pending() == []


# =============================================================================
# Listeners and heartbeat
# =============================================================================

def test_activity_channel_drives_manager(clock, scheduler):
    channel = ActivityChannel()
    manager = _manager(clock, scheduler, activity_source=channel).start()
    assert channel.listener_count == 1

    clock.advance(100)
    channel.emit("activity")
    assert manager.state.last_activity == clock.now

    channel.emit("hidden")
    assert manager.state.visible is False

    scheduler.advance(600)
    assert manager.phase is SessionPhase.EXPIRED
    assert channel.listener_count == 0


def test_heartbeat_only_while_visible(clock, scheduler):
    heartbeat = RecordingHeartbeat()
    manager = _manager(clock, scheduler, heartbeat=heartbeat).start()

    scheduler.advance(60)
    assert len(scheduler.spawned) == 2

    manager.set_visibility(False)
    scheduler.advance(60)
    assert len(scheduler.spawned) == 2


async def test_heartbeat_failure_is_logged_not_raised(clock, scheduler, caplog):
    heartbeat = RecordingHeartbeat(fail=True)
    manager = _manager(clock, scheduler, heartbeat=heartbeat).start()
    scheduler.advance(30)

    with caplog.at_level(logging.WARNING):
        await scheduler.spawned[0]()
    assert heartbeat.pings == 1
    assert "Session heartbeat failed" in caplog.text
    assert manager.phase is SessionPhase.ACTIVE


async def test_http_heartbeat_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(401))
    async with httpx.AsyncClient(transport=transport) as client:
        heartbeat = HttpHeartbeatTransport("http://test/auth/heartbeat", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await heartbeat.ping()


# =============================================================================
# Failure isolation and teardown
# =============================================================================

def test_raising_timeout_callback_still_tears_down(clock, scheduler, caplog):
    def explode():
        raise RuntimeError("ui gone")

    store = InMemoryActivityStore(KEY)
    manager = _manager(clock, scheduler, store, on_timeout=explode).start()
    with caplog.at_level(logging.ERROR):
        scheduler.advance(600)

    assert manager.phase is SessionPhase.EXPIRED
    assert store.get() is None
    assert scheduler.pending() == []
    assert "Session timeout callback raised" in caplog.text


def test_shared_read_failure_falls_back_to_local(clock, scheduler):
    class FlakyStore(InMemoryActivityStore):
        def get(self):
            raise OSError("storage unavailable")

    manager = _manager(clock, scheduler, FlakyStore(KEY)).start()
    scheduler.advance(300)
    manager.set_visibility(False)
    manager.set_visibility(True)
    assert manager.phase is SessionPhase.ACTIVE

    scheduler.advance(300)
    assert manager.phase is SessionPhase.EXPIRED


def test_destroy_is_idempotent_and_audited_once(clock, scheduler, session_factory):
    user = permission_service.create_user_context(
        user_id="u-1", email="", role=Role.PATIENT, tenant_id="clinic-1", display_name=""
    )
    timeouts = []
    manager = _manager(
        clock,
        scheduler,
        audit=AuditLogger(session_factory),
        user=user,
        on_timeout=lambda: timeouts.append(1),
    ).start()

    manager.destroy()
    manager.destroy()
    scheduler.advance(1200)

    assert manager.phase is SessionPhase.DESTROYED
    assert timeouts == []
    with session_factory() as db:
        records = db.execute(select(AuditLog)).scalars().all()
    assert [r.details for r in records] == [{"reason": "logout"}]


# =============================================================================
# Off-loop I/O
# =============================================================================

class ThreadRecordingStore(InMemoryActivityStore):
    def __init__(self, key: str):
        super().__init__(key)
        self.threads: list[int] = []

    def get(self):
        self.threads.append(threading.get_ident())
        return super().get()

    def set(self, last_activity: float) -> None:
        self.threads.append(threading.get_ident())
        super().set(last_activity)

    def clear(self) -> None:
        self.threads.append(threading.get_ident())
        super().clear()


class ThreadRecordingAudit:
    def __init__(self):
        self.calls: list[tuple[int, dict]] = []

    def log_auth(self, actor_id, tenant_id, action, details=None) -> None:
        self.calls.append((threading.get_ident(), details))


def _patient():
    return permission_service.create_user_context(
        user_id="u-1", email="", role=Role.PATIENT, tenant_id="clinic-1", display_name=""
    )


def test_io_executor_runs_writes_and_audit_off_the_caller(clock, scheduler):
    store = ThreadRecordingStore(KEY)
    audit = ThreadRecordingAudit()
    executor = ThreadPoolExecutor(max_workers=1)
    manager = _manager(
        clock, scheduler, store, audit=audit, user=_patient(), io_executor=executor
    ).start()

    clock.advance(10)
    manager.record_activity()
    manager.destroy()
    executor.shutdown(wait=True)

    caller = threading.get_ident()
    assert len(store.threads) == 3  # start, activity, clear
    assert caller not in store.threads
    assert store.get() is None  # Writes applied in submission order
    assert [details for _, details in audit.calls] == [{"reason": "logout"}]
    assert audit.calls[0][0] != caller


async def test_io_executor_reads_shared_value_off_the_loop():
    store = ThreadRecordingStore(KEY)
    audit = ThreadRecordingAudit()
    executor = ThreadPoolExecutor(max_workers=1)
    timeouts = []
    policy = SessionPolicy(timeout=0.2, heartbeat_interval=30, enable_warning=False)
    manager = SessionLifecycleManager(
        policy=policy,
        store=store,
        scheduler=AsyncioScheduler(),
        on_timeout=lambda: timeouts.append(1),
        audit=audit,
        user=_patient(),
        io_executor=executor,
    ).start()

    await asyncio.sleep(0.6)
    await asyncio.to_thread(executor.shutdown)

    assert manager.phase is SessionPhase.EXPIRED
    assert timeouts == [1]
    assert threading.get_ident() not in store.threads
    assert store.get() is None
    assert [details for _, details in audit.calls] == [{"reason": "timeout"}]
