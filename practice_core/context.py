"""Application-scoped wiring.

One AppContext per process holds the constructed core services. Nothing in
the services package reaches for module-level singletons; the HTTP layer
gets everything from app.state.context.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import sessionmaker

from practice_core.core.config import Settings, settings as default_settings
from practice_core.core.redis_client import get_sync_redis_client
from practice_core.db.enums import Channel
from practice_core.services.activity_store import (
    InMemoryActivityStore,
    RedisActivityStore,
    SharedActivityStore,
    activity_key,
)
from practice_core.services.audit_service import AuditLogger
from practice_core.services.change_feed import ChangeFeed, install_change_feed
from practice_core.services.channel_senders import ChannelSender, build_channel_senders
from practice_core.services.notification_service import NotificationManager
from practice_core.services.session_lifecycle import SessionPolicy


@dataclass
class AppContext:
    settings: Settings
    session_factory: sessionmaker
    feed: ChangeFeed
    audit: AuditLogger
    notifications: NotificationManager
    session_policy: SessionPolicy
    activity_backing: dict[str, float] = field(default_factory=dict)
    dispatch_executor: ThreadPoolExecutor | None = None
    _uninstall_feed: Callable[[], None] | None = None

    def activity_store(self, session_id: str) -> SharedActivityStore:
        """Redis-backed when REDIS_URL is set, process memory otherwise."""
        key = activity_key(session_id)
        client = get_sync_redis_client()
        if client is not None:
            return RedisActivityStore(
                client, key, ttl_seconds=int(self.session_policy.timeout) * 2
            )
        return InMemoryActivityStore(key, self.activity_backing)

    def close(self) -> None:
        self.notifications.close()
        if self.dispatch_executor is not None:
            # Let queued channel sends finish
            self.dispatch_executor.shutdown(wait=True)
            self.dispatch_executor = None
        if self._uninstall_feed is not None:
            self._uninstall_feed()
            self._uninstall_feed = None


def session_policy_from_settings(settings: Settings) -> SessionPolicy:
    return SessionPolicy(
        timeout=float(settings.SESSION_TIMEOUT_SECONDS),
        warning_window=float(settings.SESSION_WARNING_SECONDS),
        heartbeat_interval=float(settings.SESSION_HEARTBEAT_SECONDS),
        enable_warning=settings.SESSION_ENABLE_WARNING,
    )


def build_app_context(
    session_factory: sessionmaker | None = None,
    settings: Settings | None = None,
    senders: dict[Channel, ChannelSender] | None = None,
) -> AppContext:
    settings = settings or default_settings
    if session_factory is None:
        from practice_core.db.session import SessionLocal

        session_factory = SessionLocal

    feed = ChangeFeed()
    uninstall = install_change_feed(session_factory, feed)
    audit = AuditLogger(session_factory)
    dispatch_executor = None
    if settings.CHANNEL_DISPATCH_WORKERS > 0:
        dispatch_executor = ThreadPoolExecutor(
            max_workers=settings.CHANNEL_DISPATCH_WORKERS, thread_name_prefix="channel-dispatch"
        )
    notifications = NotificationManager(
        session_factory,
        feed=feed,
        senders=senders if senders is not None else build_channel_senders(settings),
        audit=audit,
        default_limit=settings.NOTIFICATION_LIST_LIMIT,
        dispatch_executor=dispatch_executor,
    )
    return AppContext(
        settings=settings,
        session_factory=session_factory,
        feed=feed,
        audit=audit,
        notifications=notifications,
        session_policy=session_policy_from_settings(settings),
        dispatch_executor=dispatch_executor,
        _uninstall_feed=uninstall,
    )
