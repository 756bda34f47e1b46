from datetime import date, datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.unit_of_work import unit_of_work
from app.models import registry  # noqa: F401
from app.models.account import Role
from app.models.credit_ledger import LedgerEntry, LedgerKind
from app.services import cancellation, ledger, scheduler
from app.services.access import Actor
from app.services.packages import PackageManager
from app.services.plans import load_catalog


def _next_weekday(start: date, weekday: int) -> date:
    return start + timedelta(days=(weekday - start.weekday()) % 7)


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        now = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        manager = PackageManager(load_catalog())
        with unit_of_work(db):
            ledger.open_account(db, "patient-1", role=Role.PATIENT, now=now)
            ledger.open_account(db, "doctor-1", role=Role.DOCTOR, now=now)
            slot = scheduler.add_availability(db, "doctor-1", 2, "10:00", "10:30")
        assert ledger.get_balance(db, "patient-1", now=now).credits == 2

        day = _next_weekday(now.date() + timedelta(days=1), 2)
        free = scheduler.book(db, "patient-1", "doctor-1", slot.id, day, now=now)
        assert free.package_price == 0
        assert ledger.get_balance(db, "patient-1", now=now).credits == 0

        with unit_of_work(db):
            manager.purchase(db, "patient-1", "starter", now=now)
        assert ledger.get_balance(db, "patient-1", now=now).credits == 10

        paid = scheduler.book(db, "patient-1", "doctor-1", slot.id, day + timedelta(days=7), now=now)
        assert paid.package_price == 500
        result = cancellation.cancel(db, paid.id, Actor("patient-1", Role.PATIENT), "conflict", now=now)
        assert result.refunded_credits == 2, result

        assert ledger.verify_balance(db, "patient-1") == 10
        kinds = [e.kind for e in db.query(LedgerEntry).filter(LedgerEntry.account_id == "patient-1").all()]
        assert kinds == [
            LedgerKind.WELCOME_BONUS,
            LedgerKind.WELCOME_BONUS,
            LedgerKind.PURCHASE,
            LedgerKind.SPENT,
            LedgerKind.REFUND,
        ], kinds
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
