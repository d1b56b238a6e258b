"""
Notification Service - creation, multi-channel dispatch, read state and real-time fan-out.

Tenant isolation is re-checked on every call: reads filter by tenant and
(broadcast OR own recipient), and mutations refuse rows outside the
caller's (recipient, tenant) pairing.

Store failures are raised as NotificationStoreError after a rollback; the
manager never retries. Channel failures are logged per channel and never
fail create(). With a dispatch executor, channel sends run off the calling
thread and create() returns as soon as the row is committed.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from practice_core.core.structured_logging import build_log_context
from practice_core.db.enums import AuditAction, Channel, Priority, RiskLevel
from practice_core.db.models import Notification
from practice_core.db.types import utcnow
from practice_core.schemas.audit import AuditRecordInput
from practice_core.schemas.notifications import NotificationCreate, NotificationRead
from practice_core.services.audit_service import AuditLogger
from practice_core.services.change_feed import ChangeEvent, ChangeFeed, ChangeType
from practice_core.services.channel_senders import ChannelSender


logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = Notification.__tablename__
DEFAULT_LIST_LIMIT = 50


class NotificationStoreError(Exception):
    """Backing store rejected a notification read or write."""


class AlertSurface(Protocol):
    """Permission-gated pop-up for high/urgent arrivals."""

    def request_permission(self) -> bool: ...

    def show(self, notification: NotificationRead) -> None: ...


NotificationCallback = Callable[[list[NotificationRead]], None]


@dataclass
class _RecipientListeners:
    """
    One listener entry per (tenant, recipient); fans out to every callback.

    Every push takes a ticket before it queries the store. A later ticket saw
    at least as much committed state, so a callback never receives an older
    ticket after a newer one.
    """
    tenant_id: str
    recipient_id: str
    callbacks: dict[int, NotificationCallback] = field(default_factory=dict)
    last_known: list[NotificationRead] = field(default_factory=list)
    tickets_issued: int = 0
    known_ticket: int = 0
    delivered: dict[int, int] = field(default_factory=dict)  # callback token -> ticket
    delivery_lock: threading.RLock = field(default_factory=threading.RLock)

    def next_ticket(self) -> int:
        self.tickets_issued += 1
        return self.tickets_issued

    def claim(self, ticket: int, items: list[NotificationRead], tokens: Iterable[int]) -> list[NotificationCallback]:
        """Record a finished push; return the callbacks it is still fresh for."""
        if ticket > self.known_ticket:
            self.known_ticket = ticket
            self.last_known = items
        fresh = []
        for token in tokens:
            callback = self.callbacks.get(token)
            if callback is None or self.delivered.get(token, 0) >= ticket:
                continue
            self.delivered[token] = ticket
            fresh.append(callback)
        return fresh

    def remove(self, token: int) -> None:
        self.callbacks.pop(token, None)
        self.delivered.pop(token, None)


def _visible_to(query, recipient_id: str, tenant_id: str, now: datetime):
    return query.where(
        Notification.tenant_id == tenant_id,
        or_(Notification.recipient_id.is_(None), Notification.recipient_id == recipient_id),
        or_(Notification.expires_at.is_(None), Notification.expires_at > now),
    )


def _owned_by(query, recipient_id: str, tenant_id: str):
    return query.where(
        Notification.tenant_id == tenant_id,
        or_(Notification.recipient_id.is_(None), Notification.recipient_id == recipient_id),
    )


def _channel_log_context(notification: NotificationRead, channel: Channel) -> dict[str, Any]:
    return build_log_context(
        user_id=notification.recipient_id,
        tenant_id=notification.tenant_id,
        notification_id=notification.id,
        channel=channel,
    )


def row_visible_to(row: Mapping[str, Any], recipient_id: str, tenant_id: str) -> bool:
    """Same scoping as the list query, applied to a change-feed snapshot."""
    if row.get("tenant_id") != tenant_id:
        return False
    target = row.get("recipient_id")
    return target is None or target == recipient_id


class NotificationManager:
    """
    Application-scoped notification core.

    Construct once per process with a session factory and (optionally) a
    change feed, channel senders, an audit logger and an alert surface.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        feed: ChangeFeed | None = None,
        senders: Mapping[Channel, ChannelSender] | None = None,
        audit: AuditLogger | None = None,
        alert_surface: AlertSurface | None = None,
        clock: Callable[[], datetime] = utcnow,
        default_limit: int = DEFAULT_LIST_LIMIT,
        dispatch_executor: Executor | None = None,
    ):
        self._session_factory = session_factory
        self._senders = dict(senders or {})
        self._audit = audit
        self._alert_surface = alert_surface
        self._alert_permission: bool | None = None
        self._clock = clock
        self._default_limit = default_limit
        self._dispatch_executor = dispatch_executor

        self._listeners: dict[tuple[str, str], _RecipientListeners] = {}
        self._next_token = 0
        self._lock = threading.RLock()
        self._closed = False
        self._unsubscribe_feed = feed.subscribe(self._on_change) if feed is not None else None

    # =========================================================================
    # Store helpers
    # =========================================================================

    def _run(self, operation: str, fn: Callable[[Session], Any]) -> Any:
        """Run fn in a fresh session; wrap store errors after rolling back."""
        with self._session_factory() as db:
            try:
                return fn(db)
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception("Notification store failure during %s", operation)
                raise NotificationStoreError(f"Notification {operation} failed") from e

    # =========================================================================
    # Creation and dispatch
    # =========================================================================

    def create(self, payload: NotificationCreate) -> NotificationRead:
        """
        Persist a notification and, unless scheduled for later, dispatch it.

        Succeeds once the row is committed; channel failures are only logged.
        """
        now = self._clock()
        due = payload.scheduled_for is None or payload.scheduled_for <= now

        def _insert(db: Session) -> NotificationRead:
            row = Notification(
                tenant_id=payload.tenant_id,
                recipient_id=payload.recipient_id,
                kind=payload.kind.value,
                title=payload.title,
                message=payload.message,
                data=payload.data,
                priority=payload.priority.value,
                category=payload.category.value,
                channels=[c.value for c in payload.channels],
                actions=[a.model_dump(mode="json") for a in payload.actions],
                expires_at=payload.expires_at,
                scheduled_for=payload.scheduled_for,
                is_read=False,
                is_archived=False,
                dispatched_at=now if due else None,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            return NotificationRead.model_validate(row)

        notification = self._run("create", _insert)
        logger.info(
            "Notification %s created (%s, due=%s)",
            notification.id,
            notification.priority.value,
            due,
            extra=build_log_context(
                user_id=payload.recipient_id,
                tenant_id=payload.tenant_id,
                notification_id=notification.id,
            ),
        )
        if due:
            self._queue_dispatch(notification)
        return notification

    def dispatch_channels(self, notification: NotificationRead) -> dict[Channel, bool]:
        """
        Hand the notification to every external channel it lists.

        Each channel is independent: a failure is logged and the rest still run.
        """
        results: dict[Channel, bool] = {}
        for channel in notification.channels:
            if channel is Channel.IN_APP:
                continue  # Delivered through the read model
            sender = self._senders.get(channel)
            if sender is None:
                logger.warning("No sender configured for channel %s", channel.value)
                results[channel] = False
                continue
            try:
                ok = bool(sender.send(notification))
            except Exception:
                logger.exception(
                    "Channel %s failed for notification %s",
                    channel.value,
                    notification.id,
                    extra=_channel_log_context(notification, channel),
                )
                ok = False
            else:
                if not ok:
                    logger.warning(
                        "Channel %s reported failure for notification %s",
                        channel.value,
                        notification.id,
                        extra=_channel_log_context(notification, channel),
                    )
            results[channel] = ok
        return results

    def _queue_dispatch(self, notification: NotificationRead) -> None:
        if self._dispatch_executor is None:
            self.dispatch_channels(notification)
            return
        try:
            self._dispatch_executor.submit(self.dispatch_channels, notification)
        except RuntimeError:
            # Executor already shut down
            logger.warning("Channel dispatch for notification %s dropped at shutdown", notification.id)

    def dispatch_due(self, now: datetime | None = None) -> int:
        """Dispatch scheduled notifications whose time has come. Returns how many."""
        now = now or self._clock()

        def _claim(db: Session) -> list[NotificationRead]:
            rows = db.execute(
                select(Notification)
                .where(Notification.scheduled_for.isnot(None))
                .where(Notification.scheduled_for <= now)
                .where(Notification.dispatched_at.is_(None))
                .order_by(Notification.scheduled_for)
            ).scalars().all()
            for row in rows:
                row.dispatched_at = now
                row.updated_at = now
            db.commit()
            return [NotificationRead.model_validate(row) for row in rows]

        claimed = self._run("dispatch", _claim)
        for notification in claimed:
            self._queue_dispatch(notification)
        if claimed:
            logger.info("Dispatched %d scheduled notifications", len(claimed))
        return len(claimed)

    # =========================================================================
    # Reads
    # =========================================================================

    def list(
        self,
        recipient_id: str,
        tenant_id: str,
        *,
        limit: int | None = None,
        include_read: bool = True,
        include_archived: bool = False,
        category: str | None = None,
    ) -> list[NotificationRead]:
        """Visible notifications for one recipient, newest first."""
        now = self._clock()
        limit = self._default_limit if limit is None else limit

        def _query(db: Session) -> list[NotificationRead]:
            query = _visible_to(select(Notification), recipient_id, tenant_id, now)
            if not include_read:
                query = query.where(Notification.is_read.is_(False))
            if not include_archived:
                query = query.where(Notification.is_archived.is_(False))
            if category:
                query = query.where(Notification.category == str(getattr(category, "value", category)))
            query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
            return [NotificationRead.model_validate(row) for row in db.execute(query).scalars()]

        return self._run("list", _query)

    def unread_count(self, recipient_id: str, tenant_id: str) -> int:
        now = self._clock()

        def _count(db: Session) -> int:
            query = _visible_to(
                select(func.count()).select_from(Notification), recipient_id, tenant_id, now
            )
            query = query.where(
                Notification.is_read.is_(False), Notification.is_archived.is_(False)
            )
            return db.execute(query).scalar_one()

        return self._run("count", _count)

    # =========================================================================
    # Mutations
    # =========================================================================

    def _load_owned(self, db: Session, ids: Iterable[UUID], actor_id: str, tenant_id: str) -> list[Notification]:
        id_list = list(ids)
        if not id_list:
            return []
        query = _owned_by(select(Notification), actor_id, tenant_id).where(Notification.id.in_(id_list))
        return db.execute(query).scalars().all()

    def mark_read(self, ids: Iterable[UUID], actor_id: str, tenant_id: str) -> int:
        """Mark the caller's visible rows read. One audit record per call."""
        now = self._clock()

        def _update(db: Session) -> int:
            rows = self._load_owned(db, ids, actor_id, tenant_id)
            for row in rows:
                if not row.is_read:
                    row.is_read = True
                    row.updated_at = now
            db.commit()
            return len(rows)

        count = self._run("mark_read", _update)
        if self._audit is not None:
            self._audit.log(
                AuditRecordInput(
                    actor_id=actor_id,
                    tenant_id=tenant_id,
                    action=AuditAction.UPDATE,
                    resource="notifications",
                    details={"action": "mark_read", "count": count},
                    risk_level=RiskLevel.LOW,
                )
            )
        return count

    def mark_archived(self, ids: Iterable[UUID], actor_id: str, tenant_id: str) -> int:
        now = self._clock()

        def _update(db: Session) -> int:
            rows = self._load_owned(db, ids, actor_id, tenant_id)
            for row in rows:
                if not row.is_archived:
                    row.is_archived = True
                    row.updated_at = now
            db.commit()
            return len(rows)

        return self._run("mark_archived", _update)

    def delete(self, notification_id: UUID, actor_id: str, tenant_id: str) -> bool:
        """Delete one row if it belongs to the caller's scope. False if not found."""

        def _delete(db: Session) -> bool:
            rows = self._load_owned(db, [notification_id], actor_id, tenant_id)
            if not rows:
                return False
            db.delete(rows[0])
            db.commit()
            return True

        return self._run("delete", _delete)

    # =========================================================================
    # Real-time fan-out
    # =========================================================================

    def subscribe(
        self, recipient_id: str, tenant_id: str, on_change: NotificationCallback
    ) -> Callable[[], None]:
        """
        Push the recipient's visible list now and after every relevant change.

        Returns an idempotent unsubscribe. If the initial read fails the
        subscription is rolled back and NotificationStoreError propagates.
        """
        key = (tenant_id, recipient_id)
        with self._lock:
            if self._closed:
                raise RuntimeError("NotificationManager is closed")
            token = self._next_token
            self._next_token += 1
            entry = self._listeners.get(key)
            if entry is None:
                entry = _RecipientListeners(tenant_id=tenant_id, recipient_id=recipient_id)
                self._listeners[key] = entry
            entry.callbacks[token] = on_change
            ticket = entry.next_ticket()

        def unsubscribe() -> None:
            with self._lock:
                existing = self._listeners.get(key)
                if existing is None or token not in existing.callbacks:
                    return
                existing.remove(token)
                if not existing.callbacks:
                    del self._listeners[key]

        try:
            current = self.list(recipient_id, tenant_id)
        except NotificationStoreError:
            unsubscribe()
            raise

        # A change pushed while the initial read ran already carries newer state
        self._deliver(entry, ticket, current, [token])
        return unsubscribe

    def last_known(self, recipient_id: str, tenant_id: str) -> list[NotificationRead]:
        """Most recent list pushed to this recipient's subscribers."""
        with self._lock:
            entry = self._listeners.get((tenant_id, recipient_id))
            return list(entry.last_known) if entry else []

    def _deliver(
        self,
        entry: _RecipientListeners,
        ticket: int,
        items: list[NotificationRead],
        tokens: Iterable[int] | None = None,
    ) -> None:
        with entry.delivery_lock:
            with self._lock:
                fresh = entry.claim(ticket, items, list(entry.callbacks) if tokens is None else tokens)
            for callback in fresh:
                self._invoke(callback, items, entry.recipient_id)

    def _on_change(self, change: ChangeEvent) -> None:
        if change.table != NOTIFICATIONS_TABLE:
            return
        with self._lock:
            matching = [
                (entry, entry.next_ticket())
                for entry in self._listeners.values()
                if row_visible_to(change.row, entry.recipient_id, entry.tenant_id)
            ]

        for entry, ticket in matching:
            try:
                current = self.list(entry.recipient_id, entry.tenant_id)
            except NotificationStoreError:
                logger.warning("Skipping push to %s after store failure", entry.recipient_id)
                continue
            self._deliver(entry, ticket, current)

        if matching and change.event is ChangeType.INSERT:
            self._maybe_alert(change.row)

    @staticmethod
    def _invoke(callback: NotificationCallback, items: list[NotificationRead], recipient_id: str) -> None:
        try:
            callback(items)
        except Exception:
            logger.exception("Notification subscriber callback failed for %s", recipient_id)

    def _maybe_alert(self, row: Mapping[str, Any]) -> None:
        if self._alert_surface is None:
            return
        try:
            notification = NotificationRead.model_validate(row)
        except ValueError:
            logger.warning("Unalertable notification row %s", row.get("id"))
            return
        if not notification.priority.is_interactive:
            return
        if notification.expires_at is not None and notification.expires_at <= self._clock():
            return

        with self._lock:
            if self._alert_permission is None:
                try:
                    self._alert_permission = bool(self._alert_surface.request_permission())
                except Exception:
                    logger.exception("Alert permission request failed")
                    self._alert_permission = False
            permitted = self._alert_permission
        if not permitted:
            return
        try:
            self._alert_surface.show(notification)
        except Exception:
            logger.exception("Alert surface failed for notification %s", notification.id)

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Detach from the feed and drop all subscriptions. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listeners.clear()
        if self._unsubscribe_feed is not None:
            self._unsubscribe_feed()
            self._unsubscribe_feed = None
