from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import ValidationError
from app.core.unit_of_work import DomainEvent, NotificationSink, emit_event, run_transaction
from app.models.account import Role
from app.models.appointment import Appointment, AppointmentStatus, FundingSource
from app.models.credit_ledger import LedgerKind
from app.models.refund import Refund
from app.services import ledger
from app.services.access import Actor, ensure_participant
from app.services.scheduler import get_appointment, release_reservation, transition


logger = logging.getLogger(__name__)

FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 12

REFUND_REASON_FULL = "UNUSED_PACKAGE"
REFUND_REASON_LATE = "LATE_CANCELLATION"

MAX_REASON_LENGTH = 1000


@dataclass(frozen=True)
class CancellationResult:
    appointment: Appointment
    refunded_credits: int
    refund_percentage: int


def refund_percentage(hours_until_start: float) -> int:
    if hours_until_start >= FULL_REFUND_HOURS:
        return 100
    if hours_until_start >= PARTIAL_REFUND_HOURS:
        return 50
    return 0


def credits_to_refund(credits_charged: int, percentage: int) -> int:
    return (int(credits_charged) * int(percentage)) // 100


def _refund_record(appointment: Appointment, refunded: int, percentage: int, now: datetime) -> Refund:
    charged = int(appointment.credits_charged or 0)
    retained = charged - refunded
    full = refunded >= charged
    return Refund(
        appointment_id=appointment.id,
        account_id=appointment.patient_id,
        reason=REFUND_REASON_FULL if full else REFUND_REASON_LATE,
        refund_type="FULL" if full else "PARTIAL",
        original_credits=charged,
        refunded_credits=refunded,
        refund_percentage=percentage,
        patient_refund_amount=float(refunded),
        # Retained credits are shared equally between doctor and platform.
        doctor_compensation=retained / 2,
        platform_fee=retained / 2,
        status="COMPLETED",
        processed_at=now,
    )


def cancel(
    db: Session,
    appointment_id: int,
    cancelled_by: Actor,
    reason: str | None = None,
    *,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> CancellationResult:
    """Cancel an appointment and return the time-tiered share of its credits.

    The patient's account row is locked before the appointment row, the same
    order booking uses, so a cancel racing a booking or a second cancel waits
    and then sees the committed state. A repeated cancel fails with
    `InvalidTransition` and refunds nothing.
    """
    if reason is not None and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters")
    now = now or utcnow()

    def work() -> CancellationResult:
        patient_id = get_appointment(db, appointment_id).patient_id
        ledger.get_account(db, patient_id, lock=True)
        appointment = get_appointment(db, appointment_id, lock=True)
        ensure_participant(cancelled_by, appointment, "cancel")
        transition(appointment, AppointmentStatus.CANCELLED)

        hours = (as_utc(appointment.start_time) - now).total_seconds() / 3600
        percentage = refund_percentage(hours)
        refunded = credits_to_refund(appointment.credits_charged, percentage)

        appointment.cancelled_by = cancelled_by.role
        appointment.cancellation_reason = reason
        appointment.cancelled_at = now
        appointment.credits_refunded = refunded
        release_reservation(db, appointment.id)

        if refunded > 0:
            from_package = appointment.funding_source == FundingSource.PACKAGE
            ledger.credit(
                db,
                appointment.patient_id,
                refunded,
                kind=LedgerKind.REFUND,
                description=f"Refund for cancelled appointment #{appointment.id} ({percentage}%)",
                package_id=(appointment.package_id if from_package else None),
                restore_package=from_package,
                appointment_id=appointment.id,
                now=now,
            )
            db.add(_refund_record(appointment, refunded, percentage, now))
            db.flush()

        other = appointment.doctor_id if cancelled_by.role != Role.DOCTOR else appointment.patient_id
        emit_event(
            db,
            DomainEvent(
                account_id=other,
                kind="APPOINTMENT",
                title="Appointment Cancelled",
                message="The appointment has been cancelled. " + (f"Reason: {reason}" if reason else "No reason provided."),
                related_id=str(appointment.id),
            ),
        )
        if refunded > 0:
            emit_event(
                db,
                DomainEvent(
                    account_id=appointment.patient_id,
                    kind="CREDITS",
                    title="Credits refunded",
                    message=f"{refunded} credit{'s' if refunded > 1 else ''} refunded for your cancelled appointment.",
                    related_id=str(appointment.id),
                ),
            )
        logger.info(
            "cancellation.cancel appointment_id=%s by=%s hours_before=%.1f pct=%s refunded=%s",
            appointment.id,
            cancelled_by.role.value,
            hours,
            percentage,
            refunded,
        )
        return CancellationResult(appointment=appointment, refunded_credits=refunded, refund_percentage=percentage)

    return run_transaction(db, work, notifier=notifier)
