import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.unit_of_work import unit_of_work
from app.models import registry  # noqa: F401
from app.models.account import Role
from app.models.availability import AvailabilitySlot
from app.services import ledger, scheduler
from app.services.packages import PackageManager
from app.services.plans import load_catalog


# A Monday morning.
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str, str | None]] = []

    def notify(self, account_id, kind, title, message, related_id=None) -> None:
        self.sent.append((account_id, kind, title, message, related_id))

    def titles_for(self, account_id: str) -> list[str]:
        return [s[2] for s in self.sent if s[0] == account_id]


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, account_id, kind, title, message, related_id=None) -> None:
        self.calls += 1
        raise RuntimeError("push gateway down")


class EngineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.Session()
        self.sink = RecordingSink()
        self.manager = PackageManager(load_catalog())
        self.now = NOW

    def tearDown(self) -> None:
        self.db.close()
        Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    def open_account(self, account_id: str, role: Role = Role.PATIENT):
        with unit_of_work(self.db, notifier=self.sink):
            acct = ledger.open_account(self.db, account_id, role=role, now=self.now)
        return acct

    def purchase(self, account_id: str, plan_id: str = "starter", now: datetime | None = None):
        with unit_of_work(self.db, notifier=self.sink):
            package = self.manager.purchase(self.db, account_id, plan_id, now=now or self.now)
        return package

    def slot_at(self, doctor_id: str, start: datetime, minutes: int = 30) -> AvailabilitySlot:
        end = start + timedelta(minutes=minutes)
        with unit_of_work(self.db):
            slot = scheduler.add_availability(
                self.db, doctor_id, start.weekday(), start.strftime("%H:%M"), end.strftime("%H:%M")
            )
        return slot

    def book_at(self, patient_id: str, doctor_id: str, start: datetime, now: datetime | None = None):
        slot = self.slot_at(doctor_id, start)
        return scheduler.book(
            self.db,
            patient_id,
            doctor_id,
            slot.id,
            start.date(),
            "Headache for three days",
            now=now or self.now,
            notifier=self.sink,
        )

    def credits(self, account_id: str) -> int:
        self.db.expire_all()
        return int(ledger.get_account(self.db, account_id).credits)
