from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class AvailabilitySlot(Base):
    """Weekly template a doctor offers, e.g. Mondays 09:00-09:30."""

    __tablename__ = "availability_slots"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    # 0 = Monday, matching date.weekday()
    day_of_week = Column(Integer, index=True, nullable=False)
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SlotReservation(Base):
    """A concrete, dated instance of a template held by one live appointment."""

    __tablename__ = "slot_reservations"
    __table_args__ = (UniqueConstraint("doctor_id", "start_time", name="uq_slot_reservations_doctor_start"),)

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id"), index=True, nullable=False)
    doctor_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
