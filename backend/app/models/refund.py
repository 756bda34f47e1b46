from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True, unique=True, nullable=False)
    account_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    reason = Column(String, nullable=False)
    refund_type = Column(String, nullable=False)
    original_credits = Column(Integer, nullable=False)
    refunded_credits = Column(Integer, nullable=False)
    refund_percentage = Column(Integer, nullable=False)
    patient_refund_amount = Column(Float, nullable=False, default=0.0)
    doctor_compensation = Column(Float, nullable=False, default=0.0)
    platform_fee = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="COMPLETED")
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
