from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import (
    AppointmentNotFound,
    InvalidTransition,
    LeadTimeViolation,
    PermissionDenied,
    SlotNotFound,
    SlotUnavailable,
    TooEarlyToStart,
    ValidationError,
)
from app.core.settings import settings
from app.core.unit_of_work import DomainEvent, NotificationSink, emit_event, run_transaction
from app.models.account import Role
from app.models.appointment import Appointment, AppointmentStatus, FundingSource
from app.models.availability import AvailabilitySlot, SlotReservation
from app.models.credit_ledger import LedgerKind
from app.models.credit_package import CreditPackage
from app.services import earnings, ledger
from app.services.access import Actor, ensure_participant
from app.services.plans import CREDITS_PER_CONSULTATION


logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

RESCHEDULABLE = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class AvailableSlot:
    slot_id: int
    start_time: datetime
    end_time: datetime


def transition(appointment: Appointment, target: AppointmentStatus) -> None:
    current = appointment.status
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move appointment from {current.value} to {target.value}",
            appointment_id=appointment.id,
        )
    appointment.status = target


def _parse_hhmm(raw: str) -> time:
    try:
        hours, minutes = (int(p) for p in str(raw).strip().split(":"))
        return time(hour=hours, minute=minutes)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid time of day: {raw!r}") from exc


def _lead_time(lead_hours: int | None) -> timedelta:
    return timedelta(hours=settings.booking_lead_hours if lead_hours is None else lead_hours)


def add_availability(
    db: Session,
    doctor_id: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
) -> AvailabilitySlot:
    if not 0 <= int(day_of_week) <= 6:
        raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    if _parse_hhmm(end_time) <= _parse_hhmm(start_time):
        raise ValidationError("end_time must be after start_time")
    doctor = ledger.get_account(db, doctor_id)
    if doctor.role != Role.DOCTOR:
        raise ValidationError("Availability can only be added for doctors")
    slot = AvailabilitySlot(
        doctor_id=doctor_id,
        day_of_week=int(day_of_week),
        start_time=start_time,
        end_time=end_time,
        is_available=True,
    )
    db.add(slot)
    db.flush()
    return slot


def slot_instance_times(slot: AvailabilitySlot, appointment_date: date) -> tuple[datetime, datetime]:
    if appointment_date.weekday() != slot.day_of_week:
        raise ValidationError("The slot is not offered on that date")
    start = datetime.combine(appointment_date, _parse_hhmm(slot.start_time), tzinfo=timezone.utc)
    end = datetime.combine(appointment_date, _parse_hhmm(slot.end_time), tzinfo=timezone.utc)
    return start, end


def get_appointment(db: Session, appointment_id: int, *, lock: bool = False) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if lock:
        query = query.with_for_update()
    appointment = query.first()
    if appointment is None:
        raise AppointmentNotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
    return appointment


def _get_slot(db: Session, slot_id: int, doctor_id: str) -> AvailabilitySlot:
    slot = db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id).first()
    if slot is None or slot.doctor_id != doctor_id:
        raise SlotNotFound("Invalid availability slot", slot_id=slot_id)
    if not slot.is_available:
        raise SlotUnavailable("This slot is no longer offered", slot_id=slot_id)
    return slot


def check_conflict(db: Session, doctor_id: str, start_time: datetime, exclude_appointment_id: int | None = None) -> bool:
    query = db.query(SlotReservation.id).filter(
        SlotReservation.doctor_id == doctor_id, SlotReservation.start_time == start_time
    )
    if exclude_appointment_id is not None:
        query = query.filter(SlotReservation.appointment_id != exclude_appointment_id)
    return query.first() is not None


def _reserve(db: Session, slot: AvailabilitySlot, start: datetime, end: datetime, appointment_id: int) -> SlotReservation:
    if check_conflict(db, slot.doctor_id, start):
        raise SlotUnavailable("This time slot is already booked. Please choose another slot.", slot_id=slot.id)
    reservation = SlotReservation(
        slot_id=slot.id,
        doctor_id=slot.doctor_id,
        start_time=start,
        end_time=end,
        appointment_id=appointment_id,
    )
    db.add(reservation)
    try:
        db.flush()
    except IntegrityError as exc:
        logger.info("scheduler.reserve.slot_taken doctor_id=%s start=%s", slot.doctor_id, start.isoformat())
        raise SlotUnavailable("This time slot is already booked. Please choose another slot.") from exc
    return reservation


def release_reservation(db: Session, appointment_id: int) -> int:
    released = (
        db.query(SlotReservation)
        .filter(SlotReservation.appointment_id == appointment_id)
        .delete(synchronize_session=False)
    )
    db.flush()
    return int(released or 0)


def get_available_slots(
    db: Session,
    doctor_id: str,
    target_date: date,
    now: datetime | None = None,
    lead_hours: int | None = None,
) -> list[AvailableSlot]:
    now = now or utcnow()
    earliest = now + _lead_time(lead_hours)
    templates = (
        db.query(AvailabilitySlot)
        .filter(AvailabilitySlot.doctor_id == doctor_id)
        .filter(AvailabilitySlot.day_of_week == target_date.weekday())
        .filter(AvailabilitySlot.is_available.is_(True))
        .order_by(AvailabilitySlot.start_time.asc())
        .all()
    )
    day_start = datetime.combine(target_date, time.min, tzinfo=timezone.utc)
    taken = {
        as_utc(r.start_time)
        for r in db.query(SlotReservation)
        .filter(SlotReservation.doctor_id == doctor_id)
        .filter(SlotReservation.start_time >= day_start)
        .filter(SlotReservation.start_time < day_start + timedelta(days=1))
        .all()
    }

    available: list[AvailableSlot] = []
    for slot in templates:
        start, end = slot_instance_times(slot, target_date)
        if start in taken or start < earliest:
            continue
        available.append(AvailableSlot(slot_id=slot.id, start_time=start, end_time=end))
    return available


def book(
    db: Session,
    patient_id: str,
    doctor_id: str,
    slot_id: int,
    appointment_date: date,
    description: str | None = None,
    *,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
    lead_hours: int | None = None,
) -> Appointment:
    """Reserve the slot instance, charge the patient and create the appointment.

    All three happen in one transaction: a slot is never held without a
    charge, and a charge never exists without its appointment.
    """
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    now = now or utcnow()
    lead = _lead_time(lead_hours)

    def work() -> Appointment:
        patient = ledger.get_account(db, patient_id, lock=True)
        if patient.role != Role.PATIENT:
            raise PermissionDenied("Only patients can book appointments")
        doctor = ledger.get_account(db, doctor_id)
        if doctor.role != Role.DOCTOR:
            raise ValidationError("Doctor not found")

        slot = _get_slot(db, slot_id, doctor_id)
        start, end = slot_instance_times(slot, appointment_date)
        if start < now:
            raise LeadTimeViolation("Cannot book appointment in the past")
        if start < now + lead:
            raise LeadTimeViolation(
                f"Appointments must be booked at least {int(lead.total_seconds() // 3600)} hours in advance"
            )

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            slot_id=slot.id,
            start_time=start,
            end_time=end,
            status=AppointmentStatus.SCHEDULED,
            patient_description=description,
            credits_charged=CREDITS_PER_CONSULTATION,
            credits_refunded=0,
            has_review=False,
        )
        db.add(appointment)
        db.flush()

        _reserve(db, slot, start, end, appointment.id)
        entry = ledger.deduct(
            db,
            patient_id,
            CREDITS_PER_CONSULTATION,
            appointment_id=appointment.id,
            now=now,
        )
        if entry.kind == LedgerKind.WELCOME_BONUS:
            appointment.funding_source = FundingSource.WELCOME_BONUS
            appointment.package_id = None
            appointment.package_price = 0
        else:
            package = db.query(CreditPackage).filter(CreditPackage.id == entry.package_id).one()
            appointment.funding_source = FundingSource.PACKAGE
            appointment.package_id = package.id
            appointment.package_price = int(package.price_per_consultation or 0)

        when = start.strftime("%Y-%m-%d %H:%M UTC")
        emit_event(
            db,
            DomainEvent(
                account_id=doctor_id,
                kind="APPOINTMENT",
                title="New Appointment Booked",
                message=f"A patient has booked an appointment with you on {when}.",
                related_id=str(appointment.id),
            ),
        )
        emit_event(
            db,
            DomainEvent(
                account_id=patient_id,
                kind="APPOINTMENT",
                title="Appointment Booked",
                message=f"Your appointment is booked for {when}.",
                related_id=str(appointment.id),
            ),
        )
        logger.info(
            "scheduler.book appointment_id=%s patient_id=%s doctor_id=%s start=%s funding=%s",
            appointment.id,
            patient_id,
            doctor_id,
            start.isoformat(),
            appointment.funding_source.value,
        )
        return appointment

    return run_transaction(db, work, notifier=notifier)


def reschedule(
    db: Session,
    appointment_id: int,
    new_slot_id: int,
    new_date: date,
    *,
    actor: Actor | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
    lead_hours: int | None = None,
) -> Appointment:
    now = now or utcnow()
    lead = _lead_time(lead_hours)

    def work() -> Appointment:
        appointment = get_appointment(db, appointment_id, lock=True)
        if actor is not None:
            ensure_participant(actor, appointment, "reschedule")
        if appointment.status not in RESCHEDULABLE:
            raise InvalidTransition(f"Cannot reschedule a {appointment.status.value} appointment")
        if as_utc(appointment.start_time) < now + lead:
            raise LeadTimeViolation("Cannot reschedule within the minimum notice period of the current time")

        slot = _get_slot(db, new_slot_id, appointment.doctor_id)
        start, end = slot_instance_times(slot, new_date)
        if start < now + lead:
            raise LeadTimeViolation("The new time does not meet the minimum booking notice")

        old_start = as_utc(appointment.start_time)
        release_reservation(db, appointment.id)
        _reserve(db, slot, start, end, appointment.id)

        appointment.slot_id = slot.id
        appointment.start_time = start
        appointment.end_time = end
        appointment.status = AppointmentStatus.SCHEDULED
        appointment.confirmed_at = None
        appointment.rescheduled_at = now

        recipient = appointment.doctor_id
        if actor is not None and actor.id == appointment.doctor_id:
            recipient = appointment.patient_id
        emit_event(
            db,
            DomainEvent(
                account_id=recipient,
                kind="APPOINTMENT",
                title="Appointment Rescheduled",
                message=f"The appointment was moved to {start.strftime('%Y-%m-%d %H:%M UTC')}.",
                related_id=str(appointment.id),
            ),
        )
        logger.info(
            "scheduler.reschedule appointment_id=%s from=%s to=%s",
            appointment.id,
            old_start.isoformat(),
            start.isoformat(),
        )
        return appointment

    return run_transaction(db, work, notifier=notifier)


def confirm(
    db: Session,
    appointment_id: int,
    *,
    actor: Actor | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> Appointment:
    now = now or utcnow()

    def work() -> Appointment:
        appointment = get_appointment(db, appointment_id, lock=True)
        if actor is not None:
            ensure_participant(actor, appointment, "confirm")
        transition(appointment, AppointmentStatus.CONFIRMED)
        appointment.confirmed_at = now
        emit_event(
            db,
            DomainEvent(
                account_id=appointment.patient_id,
                kind="APPOINTMENT",
                title="Appointment Confirmed",
                message="Your doctor confirmed the appointment.",
                related_id=str(appointment.id),
            ),
        )
        logger.info("scheduler.confirm appointment_id=%s", appointment.id)
        return appointment

    return run_transaction(db, work, notifier=notifier)


def start_session(
    db: Session,
    appointment_id: int,
    *,
    actor: Actor | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
    early_minutes: int | None = None,
) -> Appointment:
    now = now or utcnow()
    window = timedelta(minutes=settings.session_early_start_minutes if early_minutes is None else early_minutes)

    def work() -> Appointment:
        appointment = get_appointment(db, appointment_id, lock=True)
        if actor is not None:
            ensure_participant(actor, appointment, "start")
        transition(appointment, AppointmentStatus.IN_PROGRESS)
        if now < as_utc(appointment.start_time) - window:
            raise TooEarlyToStart(f"The session can start at most {int(window.total_seconds() // 60)} minutes early")
        appointment.started_at = now
        emit_event(
            db,
            DomainEvent(
                account_id=appointment.patient_id,
                kind="APPOINTMENT",
                title="Consultation Started",
                message="Your doctor has started the consultation. Join now.",
                related_id=str(appointment.id),
            ),
        )
        logger.info("scheduler.start_session appointment_id=%s", appointment.id)
        return appointment

    return run_transaction(db, work, notifier=notifier)


def complete(
    db: Session,
    appointment_id: int,
    *,
    diagnosis: str | None = None,
    prescription: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
    commission: float | None = None,
) -> Appointment:
    now = now or utcnow()

    def work() -> Appointment:
        appointment = get_appointment(db, appointment_id, lock=True)
        if actor is not None:
            ensure_participant(actor, appointment, "complete")
        transition(appointment, AppointmentStatus.COMPLETED)
        appointment.completed_at = now
        if appointment.started_at is not None:
            appointment.actual_duration_minutes = round((now - as_utc(appointment.started_at)).total_seconds() / 60)
        appointment.diagnosis = diagnosis or appointment.diagnosis
        appointment.prescription = prescription or appointment.prescription
        appointment.notes = notes or appointment.notes
        appointment.has_review = False
        split = earnings.record_split(appointment, commission=commission)
        emit_event(
            db,
            DomainEvent(
                account_id=appointment.patient_id,
                kind="APPOINTMENT",
                title="Consultation Completed",
                message="Your consultation has been completed. View your prescription and notes.",
                related_id=str(appointment.id),
            ),
        )
        logger.info(
            "scheduler.complete appointment_id=%s doctor_earnings=%s platform_earnings=%s",
            appointment.id,
            split.doctor_earnings,
            split.platform_earnings,
        )
        return appointment

    return run_transaction(db, work, notifier=notifier)


def mark_no_show(
    db: Session,
    appointment_id: int,
    *,
    actor: Actor | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> Appointment:
    now = now or utcnow()

    def work() -> Appointment:
        appointment = get_appointment(db, appointment_id, lock=True)
        if actor is not None:
            ensure_participant(actor, appointment, "no_show")
        transition(appointment, AppointmentStatus.NO_SHOW)
        appointment.no_show_at = now
        emit_event(
            db,
            DomainEvent(
                account_id=appointment.patient_id,
                kind="APPOINTMENT",
                title="Missed Appointment",
                message="Your appointment was marked as a no-show. Credits are not refunded.",
                related_id=str(appointment.id),
            ),
        )
        logger.info("scheduler.mark_no_show appointment_id=%s", appointment.id)
        return appointment

    return run_transaction(db, work, notifier=notifier)
