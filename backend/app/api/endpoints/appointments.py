from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.database import get_db
from app.core.errors import PermissionDenied
from app.core.security import CurrentUser, get_current_user, require_role
from app.core.unit_of_work import NotificationSink, unit_of_work
from app.models.account import Role
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    AvailableSlotResponse,
    AvailableSlotsResponse,
    CancelRequest,
    CancelResponse,
    CompleteRequest,
    EarningsResponse,
    RescheduleRequest,
)
from app.services import cancellation, earnings, scheduler
from app.services.access import ensure_allowed


router = APIRouter(dependencies=[Depends(get_current_user)])


class AvailabilityCreate(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str


class AvailabilityResponse(BaseModel):
    id: int
    doctor_id: str
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool

    class Config:
        from_attributes = True


@router.post("/appointments", response_model=AppointmentResponse)
async def book_appointment(
    body: AppointmentCreate,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    ensure_allowed(current_user.actor, "book")
    return scheduler.book(
        db,
        patient_id=current_user.id,
        doctor_id=body.doctor_id,
        slot_id=body.slot_id,
        appointment_date=body.appointment_date,
        description=body.description,
        notifier=notifier,
    )


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    appointment = scheduler.get_appointment(db, appointment_id)
    if current_user.role != Role.ADMIN and current_user.id not in (appointment.patient_id, appointment.doctor_id):
        raise PermissionDenied("Not a participant of this appointment")
    return appointment


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    body: RescheduleRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    return scheduler.reschedule(
        db,
        appointment_id,
        body.slot_id,
        body.appointment_date,
        actor=current_user.actor,
        notifier=notifier,
    )


@router.post("/appointments/{appointment_id}/cancel", response_model=CancelResponse)
async def cancel_appointment(
    appointment_id: int,
    body: CancelRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    result = cancellation.cancel(db, appointment_id, current_user.actor, body.reason, notifier=notifier)
    return CancelResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        refunded_credits=result.refunded_credits,
        refund_percentage=result.refund_percentage,
    )


@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    return scheduler.confirm(db, appointment_id, actor=current_user.actor, notifier=notifier)


@router.post("/appointments/{appointment_id}/start", response_model=AppointmentResponse)
async def start_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    return scheduler.start_session(db, appointment_id, actor=current_user.actor, notifier=notifier)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    body: CompleteRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    return scheduler.complete(
        db,
        appointment_id,
        diagnosis=body.diagnosis,
        prescription=body.prescription,
        notes=body.notes,
        actor=current_user.actor,
        notifier=notifier,
    )


@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_no_show(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current_user: CurrentUser = Depends(get_current_user),
):
    return scheduler.mark_no_show(db, appointment_id, actor=current_user.actor, notifier=notifier)


@router.get("/doctors/{doctor_id}/slots", response_model=AvailableSlotsResponse)
async def list_available_slots(doctor_id: str, on: date, db: Session = Depends(get_db)):
    slots = scheduler.get_available_slots(db, doctor_id, on)
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        date=on,
        slots=[AvailableSlotResponse.model_validate(s) for s in slots],
    )


@router.post("/doctors/me/availability", response_model=AvailabilityResponse)
async def add_availability(
    body: AvailabilityCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(Role.DOCTOR)),
):
    with unit_of_work(db):
        slot = scheduler.add_availability(db, current_user.id, body.day_of_week, body.start_time, body.end_time)
    return slot


@router.get("/doctors/me/earnings", response_model=EarningsResponse)
async def my_earnings(
    since: datetime | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(Role.DOCTOR)),
):
    return earnings.doctor_earnings_summary(db, current_user.id, since=since)
