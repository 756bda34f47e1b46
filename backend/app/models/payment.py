from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.core.clock import utcnow
from app.core.database import Base


class PaymentConfirmation(Base):
    __tablename__ = "payment_confirmations"

    id = Column(Integer, primary_key=True, index=True)
    reference_id = Column(String, unique=True, index=True, nullable=False)
    account_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    plan_id = Column(String, index=True, nullable=False)
    amount_paid = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)
    package_id = Column(Integer, ForeignKey("credit_packages.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
