"""Pre-filled notification payloads for common practice events.

Pure data builders: fixed channel sets and action buttons, no I/O.
"""

from datetime import datetime
from decimal import Decimal

from practice_core.db.enums import (
    ActionKind,
    ActionStyle,
    Category,
    Channel,
    NotificationKind,
    Priority,
)
from practice_core.schemas.notifications import NotificationAction, NotificationCreate


def appointment_reminder(
    tenant_id: str,
    patient_id: str,
    appointment_id: str,
    starts_at: datetime,
) -> NotificationCreate:
    return NotificationCreate(
        tenant_id=tenant_id,
        recipient_id=patient_id,
        kind=NotificationKind.APPOINTMENT,
        title="Appointment Reminder",
        message=(
            f"You have an appointment scheduled for {starts_at:%Y-%m-%d} "
            f"at {starts_at:%H:%M}"
        ),
        priority=Priority.MEDIUM,
        category=Category.REMINDER,
        channels=[Channel.IN_APP, Channel.EMAIL, Channel.SMS],
        data={"appointment_id": appointment_id},
        actions=[
            NotificationAction(
                id="confirm",
                label="Confirm",
                kind=ActionKind.INVOKE_ENDPOINT,
                target=f"/appointments/{appointment_id}/confirm",
                style=ActionStyle.PRIMARY,
            ),
            NotificationAction(
                id="reschedule",
                label="Reschedule",
                kind=ActionKind.NAVIGATE,
                target=f"/appointments/{appointment_id}/reschedule",
                style=ActionStyle.SECONDARY,
            ),
        ],
    )


def payment_reminder(
    tenant_id: str,
    patient_id: str,
    payment_id: str,
    amount: Decimal | float | str,
) -> NotificationCreate:
    amount_text = f"{Decimal(str(amount)):.2f}"
    return NotificationCreate(
        tenant_id=tenant_id,
        recipient_id=patient_id,
        kind=NotificationKind.WARNING,
        title="Payment Reminder",
        message=(
            f"You have an outstanding balance of ${amount_text}. "
            "Please make a payment to avoid late fees."
        ),
        priority=Priority.HIGH,
        category=Category.PAYMENT,
        channels=[Channel.IN_APP, Channel.EMAIL],
        data={"payment_id": payment_id, "amount": amount_text},
        actions=[
            NotificationAction(
                id="pay_now",
                label="Pay Now",
                kind=ActionKind.NAVIGATE,
                target=f"/billing/pay/{payment_id}",
                style=ActionStyle.PRIMARY,
            ),
        ],
    )


def system_alert(
    tenant_id: str,
    title: str,
    message: str,
    priority: Priority = Priority.MEDIUM,
) -> NotificationCreate:
    """Tenant-wide broadcast, in-app only."""
    return NotificationCreate(
        tenant_id=tenant_id,
        recipient_id=None,
        kind=NotificationKind.SYSTEM,
        title=title,
        message=message,
        priority=priority,
        category=Category.SYSTEM,
        channels=[Channel.IN_APP],
    )


def welcome_patient(tenant_id: str, patient_id: str, clinic_name: str) -> NotificationCreate:
    return NotificationCreate(
        tenant_id=tenant_id,
        recipient_id=patient_id,
        kind=NotificationKind.SUCCESS,
        title=f"Welcome to {clinic_name}!",
        message="Thank you for choosing our practice. Your patient portal is now ready.",
        priority=Priority.MEDIUM,
        category=Category.MARKETING,
        channels=[Channel.IN_APP, Channel.EMAIL],
        actions=[
            NotificationAction(
                id="explore_portal",
                label="Explore Portal",
                kind=ActionKind.NAVIGATE,
                target="/patient-portal",
                style=ActionStyle.PRIMARY,
            ),
        ],
    )
