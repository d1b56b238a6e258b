"""Inactivity state machine for one browsing context.

    IDLE --Start--> ACTIVE --WarningDue--> WARNED --ExpiryDue--> EXPIRED
                      ^                      |
                      +---Activity/Extend----+

reduce() is pure: it takes the current state and one event and returns the
next state plus an ordered list of effects. Timers, listeners, the
heartbeat and shared storage are driven by the adapter in
session_service.py, which interprets the effects.

Times are epoch seconds (float). The shared activity value is the source of
truth across tabs; a tab reconciles to it whenever a timer fires or it
becomes visible again.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Union


@dataclass(frozen=True)
class SessionPolicy:
    """Tunable timing policy (seconds)."""
    timeout: float = 600.0
    warning_window: float = 120.0
    heartbeat_interval: float = 30.0
    enable_warning: bool = True

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.enable_warning and not 0 < self.warning_window < self.timeout:
            raise ValueError("warning_window must be between 0 and timeout")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    WARNED = "warned"
    EXPIRED = "expired"
    DESTROYED = "destroyed"

    @property
    def is_live(self) -> bool:
        return self in (SessionPhase.ACTIVE, SessionPhase.WARNED)


@dataclass(frozen=True)
class SessionState:
    phase: SessionPhase = SessionPhase.IDLE
    last_activity: float | None = None
    warning_fired: bool = False
    visible: bool = True

    @property
    def expired(self) -> bool:
        return self.phase is SessionPhase.EXPIRED


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class Start:
    now: float


@dataclass(frozen=True)
class Activity:
    now: float


@dataclass(frozen=True)
class Extend:
    now: float


@dataclass(frozen=True)
class WarningDue:
    now: float
    shared: float | None


@dataclass(frozen=True)
class ExpiryDue:
    now: float
    shared: float | None


@dataclass(frozen=True)
class VisibilityHidden:
    pass


@dataclass(frozen=True)
class VisibilityVisible:
    now: float
    shared: float | None


@dataclass(frozen=True)
class Destroy:
    pass


Event = Union[
    Start, Activity, Extend, WarningDue, ExpiryDue, VisibilityHidden, VisibilityVisible, Destroy
]


# =============================================================================
# Effects
# =============================================================================

@dataclass(frozen=True)
class RegisterListeners:
    pass


@dataclass(frozen=True)
class RemoveListeners:
    pass


@dataclass(frozen=True)
class ScheduleTimers:
    """Replace both timers. warning_at is None when no warning is pending."""
    warning_at: float | None
    expiry_at: float


@dataclass(frozen=True)
class CancelTimers:
    pass


@dataclass(frozen=True)
class StartHeartbeat:
    pass


@dataclass(frozen=True)
class StopHeartbeat:
    pass


@dataclass(frozen=True)
class WriteShared:
    last_activity: float


@dataclass(frozen=True)
class ClearShared:
    pass


@dataclass(frozen=True)
class FireWarning:
    remaining: float


@dataclass(frozen=True)
class FireTimeout:
    pass


@dataclass(frozen=True)
class FireExtend:
    pass


Effect = Union[
    RegisterListeners,
    RemoveListeners,
    ScheduleTimers,
    CancelTimers,
    StartHeartbeat,
    StopHeartbeat,
    WriteShared,
    ClearShared,
    FireWarning,
    FireTimeout,
    FireExtend,
]


# =============================================================================
# Reducer
# =============================================================================

def _schedule(last_activity: float, warning_fired: bool, policy: SessionPolicy) -> ScheduleTimers:
    warning_at = None
    if policy.enable_warning and not warning_fired:
        warning_at = last_activity + policy.timeout - policy.warning_window
    return ScheduleTimers(warning_at=warning_at, expiry_at=last_activity + policy.timeout)


def _expire(state: SessionState) -> tuple[SessionState, list[Effect]]:
    # Teardown precedes the callback
    return (
        replace(state, phase=SessionPhase.EXPIRED),
        [CancelTimers(), StopHeartbeat(), ClearShared(), RemoveListeners(), FireTimeout()],
    )


def _touch(state: SessionState, now: float, policy: SessionPolicy) -> tuple[SessionState, list[Effect]]:
    # Never move the deadline backwards for an out-of-order timestamp
    last = max(now, state.last_activity) if state.last_activity is not None else now
    new_state = replace(state, phase=SessionPhase.ACTIVE, last_activity=last, warning_fired=False)
    return new_state, [WriteShared(last), CancelTimers(), _schedule(last, False, policy)]


def _adopt(state: SessionState, last: float, policy: SessionPolicy) -> tuple[SessionState, list[Effect]]:
    """Reconcile to a newer shared value written by another tab."""
    new_state = replace(state, phase=SessionPhase.ACTIVE, last_activity=last, warning_fired=False)
    return new_state, [CancelTimers(), _schedule(last, False, policy)]


def reduce(
    state: SessionState, event: Event, policy: SessionPolicy
) -> tuple[SessionState, list[Effect]]:
    """Apply one event. Events that do not apply to the current phase are no-ops."""
    if isinstance(event, Start):
        if state.phase is not SessionPhase.IDLE:
            return state, []
        new_state = SessionState(phase=SessionPhase.ACTIVE, last_activity=event.now, visible=state.visible)
        effects: list[Effect] = [
            RegisterListeners(),
            WriteShared(event.now),
            _schedule(event.now, False, policy),
        ]
        if new_state.visible:
            effects.append(StartHeartbeat())
        return new_state, effects

    if isinstance(event, Destroy):
        if state.phase is SessionPhase.IDLE:
            return replace(state, phase=SessionPhase.DESTROYED), []
        if not state.phase.is_live:
            return state, []
        return (
            replace(state, phase=SessionPhase.DESTROYED),
            [CancelTimers(), StopHeartbeat(), ClearShared(), RemoveListeners()],
        )

    if not state.phase.is_live:
        return state, []

    if isinstance(event, Activity):
        return _touch(state, event.now, policy)

    if isinstance(event, Extend):
        new_state, effects = _touch(state, event.now, policy)
        return new_state, effects + [FireExtend()]

    local = state.last_activity if state.last_activity is not None else 0.0

    if isinstance(event, WarningDue):
        if not policy.enable_warning or state.warning_fired:
            return state, []
        if event.shared is not None and event.shared > local:
            return _adopt(state, event.shared, policy)
        warn_at = local + policy.timeout - policy.warning_window
        if event.now < warn_at:
            # Early wakeup; re-arm without changing phase
            return state, [CancelTimers(), _schedule(local, False, policy)]
        remaining = max(0.0, local + policy.timeout - event.now)
        return replace(state, phase=SessionPhase.WARNED, warning_fired=True), [FireWarning(remaining)]

    if isinstance(event, ExpiryDue):
        effective = local
        if event.shared is not None and event.shared > local:
            effective = event.shared
        if event.now - effective < policy.timeout:
            if effective > local:
                return _adopt(state, effective, policy)
            return state, [CancelTimers(), _schedule(local, state.warning_fired, policy)]
        return _expire(state)

    if isinstance(event, VisibilityHidden):
        if not state.visible:
            return state, []
        return replace(state, visible=False), [StopHeartbeat()]

    if isinstance(event, VisibilityVisible):
        # Missing shared value: another tab already ended the session
        if event.shared is None or event.now - event.shared >= policy.timeout:
            return _expire(replace(state, visible=True))

        effects = [] if state.visible else [StartHeartbeat()]
        if event.shared > local:
            new_state, adopt_effects = _adopt(replace(state, visible=True), event.shared, policy)
            return new_state, effects + adopt_effects
        # Never pull the deadline back for a stale read
        last = max(event.shared, local)
        new_state = replace(state, visible=True, last_activity=last)
        return new_state, effects + [
            CancelTimers(),
            _schedule(last, state.warning_fired, policy),
        ]

    return state, []
