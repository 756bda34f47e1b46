import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base
from app.models.account import Role


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class FundingSource(str, enum.Enum):
    WELCOME_BONUS = "WELCOME_BONUS"
    PACKAGE = "PACKAGE"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    doctor_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    slot_id = Column(Integer, ForeignKey("availability_slots.id"), index=True, nullable=True)
    start_time = Column(DateTime(timezone=True), index=True, nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(Enum(AppointmentStatus), index=True, nullable=False, default=AppointmentStatus.SCHEDULED)
    patient_description = Column(Text, nullable=True)

    credits_charged = Column(Integer, nullable=False, default=2)
    funding_source = Column(Enum(FundingSource), nullable=True)
    package_id = Column(Integer, ForeignKey("credit_packages.id"), nullable=True)
    package_price = Column(Integer, nullable=False, default=0)
    platform_commission = Column(Float, nullable=True)
    doctor_earnings = Column(Float, nullable=True)
    platform_earnings = Column(Float, nullable=True)
    credits_refunded = Column(Integer, nullable=False, default=0)

    cancelled_by = Column(Enum(Role), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    prescription = Column(Text, nullable=True)
    has_review = Column(Boolean, nullable=False, default=False)
    actual_duration_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    no_show_at = Column(DateTime(timezone=True), nullable=True)
    rescheduled_at = Column(DateTime(timezone=True), nullable=True)
