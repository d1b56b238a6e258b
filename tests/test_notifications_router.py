"""Tests for notification, audit and internal HTTP endpoints."""

from datetime import timedelta

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from practice_core.core.config import settings
from practice_core.db.enums import Channel, Role
from practice_core.db.models import AuditLog, Notification
from practice_core.db.types import utcnow


async def _create(staff_client, **overrides):
    body = {
        "tenant_id": "clinic-1",
        "recipient_id": "patient-1",
        "title": "Appointment tomorrow",
        "message": "See you at 9:00",
    }
    body.update(overrides)
    return await staff_client.post("/notifications", json=body)


# =============================================================================
# Creation
# =============================================================================

async def test_staff_create_is_pinned_to_own_tenant(staff_client, patient_client):
    response = await _create(staff_client, tenant_id="clinic-2")
    assert response.status_code == 201
    assert response.json()["tenant_id"] == "clinic-1"

    listing = await patient_client.get("/me/notifications")
    assert listing.status_code == 200
    assert listing.json()["unread_count"] == 1


async def test_create_dispatches_channels(staff_client, senders):
    response = await _create(staff_client, channels=["in-app", "email"])
    assert response.status_code == 201
    assert len(senders[Channel.EMAIL].sent) == 1


async def test_patient_cannot_create(patient_client, session_factory):
    response = await patient_client.post(
        "/notifications",
        json={"tenant_id": "clinic-1", "title": "Spam", "message": "..."},
    )
    assert response.status_code == 403
    assert response.json()["detail"].startswith("Access Denied")

    with session_factory() as db:
        (record,) = db.execute(select(AuditLog)).scalars().all()
    assert record.risk_level == "high"
    assert record.details["result"] == "permission_denied"


# =============================================================================
# Recipient endpoints
# =============================================================================

async def test_read_archive_delete_flow(staff_client, patient_client):
    created = (await _create(staff_client)).json()
    ids = {"ids": [created["id"]]}

    assert (await patient_client.get("/me/notifications/count")).json() == {"count": 1}

    response = await patient_client.post("/me/notifications/read", json=ids)
    assert response.json() == {"updated": 1}
    assert (await patient_client.get("/me/notifications/count")).json() == {"count": 0}

    unread = await patient_client.get("/me/notifications", params={"unread_only": True})
    assert unread.json()["items"] == []

    await patient_client.post("/me/notifications/archive", json=ids)
    assert (await patient_client.get("/me/notifications")).json()["items"] == []
    archived = await patient_client.get("/me/notifications", params={"include_archived": True})
    assert len(archived.json()["items"]) == 1

    assert (await patient_client.delete(f"/me/notifications/{created['id']}")).status_code == 204
    assert (await patient_client.delete(f"/me/notifications/{created['id']}")).status_code == 404


async def test_other_patient_sees_nothing(app, staff_client, auth_factory):
    await _create(staff_client)
    other = auth_factory(Role.PATIENT, user_id="patient-2")
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={other.cookie_name: other.token},
    ) as c:
        response = await c.get("/me/notifications")
    assert response.json() == {"items": [], "unread_count": 0}


async def test_request_validation(patient_client):
    assert (await patient_client.get("/me/notifications", params={"limit": 0})).status_code == 422
    assert (await patient_client.post("/me/notifications/read", json={"ids": []})).status_code == 422


# =============================================================================
# Audit trail
# =============================================================================

async def test_audit_list_requires_feature(staff_client):
    response = await staff_client.get("/audit/")
    assert response.status_code == 403


async def test_audit_list_and_verify(app, auth_factory):
    engineer = auth_factory(Role.SUPPORT_ENGINEER, user_id="eng-1")
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {engineer.token}"},
    ) as c:
        listing = await c.get("/audit/")
        verify = await c.get("/audit/verify")

    assert listing.status_code == 200
    assert listing.json()["total"] >= 1  # The guard audits its own evaluation
    assert verify.json() == {"valid": True, "broken_at": None}


# =============================================================================
# Internal scheduled dispatch
# =============================================================================

async def test_internal_dispatch_requires_configured_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")
    response = await client.post(
        "/internal/scheduled/notifications", headers={"X-Internal-Secret": "anything"}
    )
    assert response.status_code == 501


async def test_internal_dispatch_rejects_wrong_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "s3cret")
    response = await client.post(
        "/internal/scheduled/notifications", headers={"X-Internal-Secret": "nope"}
    )
    assert response.status_code == 403


async def test_internal_dispatch_sends_due_notifications(client, session_factory, senders, monkeypatch):
    now = utcnow()
    with session_factory() as db:
        db.add(
            Notification(
                tenant_id="clinic-1",
                recipient_id="patient-1",
                kind="appointment",
                title="Reminder",
                message="Tomorrow at 9:00",
                priority="medium",
                category="reminder",
                channels=["in-app", "sms"],
                actions=[],
                scheduled_for=now - timedelta(minutes=5),
                created_at=now - timedelta(hours=1),
                updated_at=now - timedelta(hours=1),
            )
        )
        db.commit()

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "s3cret")
    headers = {"X-Internal-Secret": "s3cret"}
    response = await client.post("/internal/scheduled/notifications", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"dispatched": 1}
    assert len(senders[Channel.SMS].sent) == 1

    again = await client.post("/internal/scheduled/notifications", headers=headers)
    assert again.json() == {"dispatched": 0}
