import enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String

from app.core.clock import utcnow
from app.core.database import Base


class PackageType(str, enum.Enum):
    STARTER = "STARTER"
    FAMILY = "FAMILY"
    WELLNESS = "WELLNESS"


class PackageStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class CreditPackage(Base):
    __tablename__ = "credit_packages"
    __table_args__ = (
        CheckConstraint("credits_used >= 0 AND credits_used <= total_credits", name="ck_packages_used_range"),
        CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= total_credits", name="ck_packages_remaining_range"
        ),
        CheckConstraint("credits_used + credits_remaining = total_credits", name="ck_packages_conservation"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    package_type = Column(Enum(PackageType), index=True, nullable=False)
    plan_version = Column(String, nullable=True)
    consultations = Column(Integer, nullable=False, default=0)
    total_credits = Column(Integer, nullable=False)
    credits_used = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=False)
    price_ksh = Column(Integer, nullable=False)
    price_per_consultation = Column(Integer, nullable=False)
    purchased_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    status = Column(Enum(PackageStatus), index=True, nullable=False, default=PackageStatus.ACTIVE)
    is_shareable = Column(Boolean, nullable=False, default=False)
    source = Column(String, nullable=False, default="purchase")
    replaced_package_id = Column(Integer, ForeignKey("credit_packages.id"), nullable=True)
    # Last "expiring soon" warning sent: the threshold in days and when.
    expiry_warning_days = Column(Integer, nullable=True)
    expiry_warned_at = Column(DateTime(timezone=True), nullable=True)
