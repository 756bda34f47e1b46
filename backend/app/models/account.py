import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Role(str, enum.Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    ADMIN = "ADMIN"
    UNASSIGNED = "UNASSIGNED"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),)

    id = Column(String, primary_key=True, index=True)
    role = Column(Enum(Role), nullable=False, default=Role.UNASSIGNED)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
