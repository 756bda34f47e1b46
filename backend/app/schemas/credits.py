from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from app.models.credit_ledger import LedgerKind


class PackageSummaryResponse(BaseModel):
    package_id: int
    package_type: str
    consultations: int
    consultations_used: float
    consultations_remaining: float
    credits_remaining: int
    valid_until: datetime
    days_remaining: int
    price_per_consultation: int

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    credits: int
    consultations_available: int
    active_package: Optional[PackageSummaryResponse] = None

    class Config:
        from_attributes = True


class CreditCheckResponse(BaseModel):
    has_credits: bool
    credits: int
    consultations_available: int
    active_package: Optional[PackageSummaryResponse] = None

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: int
    amount: int
    kind: LedgerKind
    description: Optional[str] = None
    balance_before: int
    balance_after: int
    package_id: Optional[int] = None
    appointment_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class HistoryResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    limit: int
    offset: int
