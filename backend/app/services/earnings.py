from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.core.settings import settings
from app.models.appointment import Appointment, AppointmentStatus, FundingSource


@dataclass(frozen=True)
class EarningsSplit:
    doctor_earnings: float
    platform_earnings: float
    commission: float


@dataclass(frozen=True)
class EarningsSummary:
    doctor_id: str
    completed_consultations: int
    free_consultations: int
    doctor_earnings: float
    platform_earnings: float


def _round_money(v: float) -> float:
    return round(float(v), 2)


def split(appointment: Appointment, commission: float | None = None) -> EarningsSplit:
    """Revenue share of one consultation. Free (welcome bonus) consultations earn nothing."""
    rate = settings.platform_commission if commission is None else float(commission)
    if rate < 0 or rate > 1:
        raise ValidationError("commission must be between 0 and 1")
    if appointment.funding_source == FundingSource.WELCOME_BONUS:
        return EarningsSplit(doctor_earnings=0.0, platform_earnings=0.0, commission=0.0)
    price = float(appointment.package_price or 0)
    return EarningsSplit(
        doctor_earnings=_round_money(price * (1 - rate)),
        platform_earnings=_round_money(price * rate),
        commission=rate,
    )


def record_split(appointment: Appointment, commission: float | None = None) -> EarningsSplit:
    result = split(appointment, commission=commission)
    appointment.doctor_earnings = result.doctor_earnings
    appointment.platform_earnings = result.platform_earnings
    appointment.platform_commission = result.commission
    return result


def doctor_earnings_summary(db: Session, doctor_id: str, since: datetime | None = None) -> EarningsSummary:
    query = db.query(
        func.count(Appointment.id),
        func.coalesce(func.sum(Appointment.doctor_earnings), 0),
        func.coalesce(func.sum(Appointment.platform_earnings), 0),
    ).filter(Appointment.doctor_id == doctor_id, Appointment.status == AppointmentStatus.COMPLETED)
    if since is not None:
        query = query.filter(Appointment.completed_at >= since)
    count, doctor_total, platform_total = query.one()

    free_query = db.query(func.count(Appointment.id)).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == AppointmentStatus.COMPLETED,
        Appointment.funding_source == FundingSource.WELCOME_BONUS,
    )
    if since is not None:
        free_query = free_query.filter(Appointment.completed_at >= since)

    return EarningsSummary(
        doctor_id=doctor_id,
        completed_consultations=int(count or 0),
        free_consultations=int(free_query.scalar() or 0),
        doctor_earnings=_round_money(doctor_total or 0),
        platform_earnings=_round_money(platform_total or 0),
    )
