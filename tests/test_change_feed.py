"""Tests for the commit-driven change feed."""

from practice_core.db.models import Notification
from practice_core.db.types import utcnow
from practice_core.services.change_feed import ChangeFeed, ChangeType, install_change_feed


def _row(**overrides) -> Notification:
    now = utcnow()
    values = dict(
        tenant_id="clinic-1",
        recipient_id="patient-1",
        kind="info",
        title="Hello",
        message="World",
        priority="medium",
        category="system",
        channels=["in-app"],
        actions=[],
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return Notification(**values)


def test_commit_publishes_insert_update_delete(session_factory):
    feed = ChangeFeed()
    events = []
    feed.subscribe(events.append)
    install_change_feed(session_factory, feed)

    with session_factory() as db:
        row = _row()
        db.add(row)
        db.commit()
        row.is_read = True
        db.commit()
        db.delete(row)
        db.commit()

    assert [e.event for e in events] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert all(e.table == "notifications" for e in events)
    assert events[0].row["tenant_id"] == "clinic-1"
    assert events[1].row["is_read"] is True


def test_rollback_discards_pending_changes(session_factory):
    feed = ChangeFeed()
    events = []
    feed.subscribe(events.append)
    install_change_feed(session_factory, feed)

    with session_factory() as db:
        db.add(_row())
        db.flush()
        db.rollback()
        db.add(_row(title="Second"))
        db.commit()

    assert len(events) == 1
    assert events[0].row["title"] == "Second"


def test_failing_handler_does_not_block_others(session_factory):
    feed = ChangeFeed()
    received = []

    def explode(change):
        raise RuntimeError("subscriber bug")

    feed.subscribe(explode)
    feed.subscribe(received.append)
    install_change_feed(session_factory, feed)

    with session_factory() as db:
        db.add(_row())
        db.commit()

    assert len(received) == 1


def test_unsubscribe_and_uninstall(session_factory):
    feed = ChangeFeed()
    events = []
    unsubscribe = feed.subscribe(events.append)
    uninstall = install_change_feed(session_factory, feed)
    assert feed.subscriber_count == 1

    unsubscribe()
    assert feed.subscriber_count == 0

    feed.subscribe(events.append)
    uninstall()
    with session_factory() as db:
        db.add(_row())
        db.commit()
    assert events == []
