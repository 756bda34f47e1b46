import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base


class LedgerKind(str, enum.Enum):
    WELCOME_BONUS = "WELCOME_BONUS"
    PURCHASE = "PURCHASE"
    SPENT = "SPENT"
    REFUND = "REFUND"


class LedgerEntry(Base):
    __tablename__ = "credit_ledger"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    kind = Column(Enum(LedgerKind), index=True, nullable=False)
    description = Column(String, nullable=True)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    package_id = Column(Integer, ForeignKey("credit_packages.id"), index=True, nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    package = relationship("CreditPackage")
