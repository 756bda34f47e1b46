from pydantic import BaseModel
from typing import List, Optional


class PlanResponse(BaseModel):
    plan_id: str
    package_type: str
    tier: int
    consultations: int
    credits: int
    price_ksh: int
    price_per_consultation: int
    is_shareable: bool


class PlanCatalogResponse(BaseModel):
    version: str
    plans: List[PlanResponse]


class UpgradeQuoteResponse(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    target_plan: str
    current_package_id: Optional[int] = None
    amount_due: int
    credits_granted: int
    rollover_credits: int

    class Config:
        from_attributes = True


class PaymentConfirmedRequest(BaseModel):
    account_id: str
    plan_id: str
    amount_paid: int
    reference_id: str
    subscription: bool = False


class PaymentConfirmedResponse(BaseModel):
    received: bool
    reference_id: str
    kind: str
    package_id: Optional[int] = None
    duplicate: bool
