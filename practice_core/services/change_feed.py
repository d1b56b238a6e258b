"""In-process change feed for notification rows.

install_change_feed() hooks SQLAlchemy session events: rows touched by a
flush are snapshotted, and the snapshots are published only once the
transaction commits. A rollback drops them.

The feed is a plain broadcast; it does not scope events by tenant.
Subscribers own their filtering.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, sessionmaker


logger = logging.getLogger(__name__)

_PENDING_KEY = "change_feed_pending"


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    event: ChangeType
    table: str
    row: dict[str, Any] = field(default_factory=dict)


ChangeHandler = Callable[[ChangeEvent], None]


class ChangeFeed:
    """Thread-safe broadcast channel. A failing handler does not stop the others."""

    def __init__(self):
        self._handlers: dict[int, ChangeHandler] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._handlers[token] = handler

        def unsubscribe() -> None:
            with self._lock:
                self._handlers.pop(token, None)

        return unsubscribe

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            try:
                handler(change)
            except Exception:
                logger.exception("Change feed handler failed for %s on %s", change.event.value, change.table)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)


def snapshot_row(obj: Any) -> dict[str, Any]:
    """Column values of a mapped instance."""
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


def install_change_feed(
    session_factory: sessionmaker,
    feed: ChangeFeed,
    tables: tuple[str, ...] = ("notifications",),
) -> Callable[[], None]:
    """
    Publish committed changes of the given tables to feed.

    Returns a callable that removes the hooks again.
    """

    def _tracked(obj: Any) -> bool:
        return getattr(obj, "__tablename__", None) in tables

    def after_flush(session: Session, flush_context) -> None:
        pending: list[ChangeEvent] = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            if _tracked(obj):
                pending.append(ChangeEvent(ChangeType.INSERT, obj.__tablename__, snapshot_row(obj)))
        for obj in session.dirty:
            if _tracked(obj) and session.is_modified(obj, include_collections=False):
                pending.append(ChangeEvent(ChangeType.UPDATE, obj.__tablename__, snapshot_row(obj)))
        for obj in session.deleted:
            if _tracked(obj):
                pending.append(ChangeEvent(ChangeType.DELETE, obj.__tablename__, snapshot_row(obj)))

    def after_commit(session: Session) -> None:
        pending = session.info.pop(_PENDING_KEY, [])
        for change in pending:
            feed.publish(change)

    def after_rollback(session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    event.listen(session_factory, "after_flush", after_flush)
    event.listen(session_factory, "after_commit", after_commit)
    event.listen(session_factory, "after_rollback", after_rollback)

    def uninstall() -> None:
        event.remove(session_factory, "after_flush", after_flush)
        event.remove(session_factory, "after_commit", after_commit)
        event.remove(session_factory, "after_rollback", after_rollback)

    return uninstall
