from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime

from app.models.account import Role
from app.models.appointment import AppointmentStatus, FundingSource


class AppointmentCreate(BaseModel):
    doctor_id: str
    slot_id: int
    appointment_date: date
    description: Optional[str] = Field(default=None, max_length=2000)


class RescheduleRequest(BaseModel):
    slot_id: int
    appointment_date: date


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class CompleteRequest(BaseModel):
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: str
    doctor_id: str
    slot_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    patient_description: Optional[str] = None
    credits_charged: int
    funding_source: Optional[FundingSource] = None
    package_id: Optional[int] = None
    package_price: int
    doctor_earnings: Optional[float] = None
    platform_earnings: Optional[float] = None
    credits_refunded: int
    cancelled_by: Optional[Role] = None
    cancellation_reason: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    has_review: bool

    class Config:
        from_attributes = True


class CancelResponse(BaseModel):
    appointment: AppointmentResponse
    refunded_credits: int
    refund_percentage: int


class AvailableSlotResponse(BaseModel):
    slot_id: int
    start_time: datetime
    end_time: datetime

    class Config:
        from_attributes = True


class AvailableSlotsResponse(BaseModel):
    doctor_id: str
    date: date
    slots: List[AvailableSlotResponse]


class EarningsResponse(BaseModel):
    doctor_id: str
    completed_consultations: int
    free_consultations: int
    doctor_earnings: float
    platform_earnings: float

    class Config:
        from_attributes = True
