import unittest
from datetime import timedelta

from engine_fixtures import EngineTestCase

from app.core.errors import ValidationError
from app.models.account import Role
from app.models.appointment import Appointment, FundingSource
from app.services import earnings, scheduler
from app.services.access import Actor


class TestSplit(unittest.TestCase):
    def test_package_consultation(self):
        result = earnings.split(Appointment(funding_source=FundingSource.PACKAGE, package_price=500), commission=0.12)
        self.assertEqual(result.platform_earnings, 60.0)
        self.assertEqual(result.doctor_earnings, 440.0)
        self.assertEqual(result.commission, 0.12)

    def test_rounds_to_cents(self):
        result = earnings.split(Appointment(funding_source=FundingSource.PACKAGE, package_price=475), commission=0.12)
        self.assertEqual(result.platform_earnings, 57.0)
        self.assertEqual(result.doctor_earnings, 418.0)

        odd = earnings.split(Appointment(funding_source=FundingSource.PACKAGE, package_price=333), commission=0.125)
        self.assertEqual(odd.platform_earnings, 41.62)
        self.assertEqual(odd.doctor_earnings, 291.38)

    def test_welcome_bonus_earns_nothing(self):
        result = earnings.split(Appointment(funding_source=FundingSource.WELCOME_BONUS, package_price=0))
        self.assertEqual((result.doctor_earnings, result.platform_earnings), (0.0, 0.0))

    def test_commission_bounds(self):
        with self.assertRaises(ValidationError):
            earnings.split(Appointment(funding_source=FundingSource.PACKAGE, package_price=500), commission=1.5)


class TestEarningsSummary(EngineTestCase):
    def test_aggregates_completed_consultations(self):
        self.open_account("p1")
        self.open_account("d1", role=Role.DOCTOR)
        self.purchase("p1", "wellness")
        doctor = Actor("d1", Role.DOCTOR)
        start = self.now + timedelta(hours=50)

        ids = []
        for offset in (0, 1, 2):
            ids.append(self.book_at("p1", "d1", start + timedelta(hours=offset)).id)
        for appointment_id in ids[:2]:
            scheduler.confirm(self.db, appointment_id, actor=doctor, now=self.now)
            scheduler.start_session(self.db, appointment_id, actor=doctor, now=start + timedelta(hours=2))
            scheduler.complete(self.db, appointment_id, actor=doctor, now=start + timedelta(hours=3))

        summary = earnings.doctor_earnings_summary(self.db, "d1")
        self.assertEqual(summary.completed_consultations, 2)
        self.assertEqual(summary.free_consultations, 1)
        self.assertEqual(summary.doctor_earnings, 396.0)
        self.assertEqual(summary.platform_earnings, 54.0)


if __name__ == "__main__":
    unittest.main()
