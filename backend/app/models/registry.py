# Importing this module registers every table on Base.metadata.
from app.models.account import Account, Role
from app.models.appointment import Appointment, AppointmentStatus, FundingSource
from app.models.availability import AvailabilitySlot, SlotReservation
from app.models.credit_ledger import LedgerEntry, LedgerKind
from app.models.credit_package import CreditPackage, PackageStatus, PackageType
from app.models.notification import Notification
from app.models.payment import PaymentConfirmation
from app.models.refund import Refund

__all__ = [
    "Account",
    "Appointment",
    "AppointmentStatus",
    "AvailabilitySlot",
    "CreditPackage",
    "FundingSource",
    "LedgerEntry",
    "LedgerKind",
    "Notification",
    "PackageStatus",
    "PackageType",
    "PaymentConfirmation",
    "Refund",
    "Role",
    "SlotReservation",
]
