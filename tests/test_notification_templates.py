"""Tests for the pre-filled notification builders."""

from datetime import datetime, timezone
from decimal import Decimal

from practice_core.db.enums import ActionKind, Category, Channel, Priority
from practice_core.services import notification_templates


def test_appointment_reminder():
    starts_at = datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc)
    payload = notification_templates.appointment_reminder("clinic-1", "patient-1", "appt-7", starts_at)

    assert payload.recipient_id == "patient-1"
    assert payload.category is Category.REMINDER
    assert payload.channels == [Channel.IN_APP, Channel.EMAIL, Channel.SMS]
    assert "2026-03-02" in payload.message and "14:30" in payload.message
    confirm, reschedule = payload.actions
    assert confirm.kind is ActionKind.INVOKE_ENDPOINT
    assert confirm.target == "/appointments/appt-7/confirm"
    assert reschedule.kind is ActionKind.NAVIGATE


def test_payment_reminder_formats_amount():
    payload = notification_templates.payment_reminder("clinic-1", "patient-1", "pay-3", Decimal("80"))
    assert payload.priority is Priority.HIGH
    assert "$80.00" in payload.message
    assert payload.data == {"payment_id": "pay-3", "amount": "80.00"}
    assert payload.actions[0].target == "/billing/pay/pay-3"


def test_system_alert_is_an_in_app_broadcast():
    payload = notification_templates.system_alert(
        "clinic-1", "Maintenance", "Down at 22:00", priority=Priority.URGENT
    )
    assert payload.recipient_id is None
    assert payload.channels == [Channel.IN_APP]
    assert payload.priority is Priority.URGENT


def test_welcome_patient_links_to_portal():
    payload = notification_templates.welcome_patient("clinic-1", "patient-1", "Bright Smiles")
    assert payload.title == "Welcome to Bright Smiles!"
    assert payload.category is Category.MARKETING
    assert payload.actions[0].target == "/patient-portal"
