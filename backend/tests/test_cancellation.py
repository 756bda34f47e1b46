import unittest
from datetime import timedelta

from engine_fixtures import EngineTestCase

from app.core.errors import InvalidTransition, PermissionDenied
from app.models.account import Role
from app.models.appointment import AppointmentStatus, FundingSource
from app.models.credit_ledger import LedgerEntry, LedgerKind
from app.models.refund import Refund
from app.services import cancellation, ledger, scheduler
from app.services.access import Actor


class TestRefundPercentage(unittest.TestCase):
    def test_tiers(self):
        self.assertEqual(cancellation.refund_percentage(72), 100)
        self.assertEqual(cancellation.refund_percentage(24), 100)
        self.assertEqual(cancellation.refund_percentage(23.99), 50)
        self.assertEqual(cancellation.refund_percentage(12), 50)
        self.assertEqual(cancellation.refund_percentage(11.99), 0)
        self.assertEqual(cancellation.refund_percentage(-1), 0)

    def test_credits_rounded_down(self):
        self.assertEqual(cancellation.credits_to_refund(2, 100), 2)
        self.assertEqual(cancellation.credits_to_refund(2, 50), 1)
        self.assertEqual(cancellation.credits_to_refund(2, 0), 0)
        self.assertEqual(cancellation.credits_to_refund(3, 50), 1)


class TestCancel(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.open_account("p1")
        self.open_account("p2")
        self.open_account("d1", role=Role.DOCTOR)
        self.patient = Actor("p1", Role.PATIENT)
        self.start = self.now + timedelta(hours=50)
        self.package = self.purchase("p1", "starter")
        self.bonus_appointment = self.book_at("p1", "d1", self.start - timedelta(hours=2))
        self.appointment = self.book_at("p1", "d1", self.start)
        self.assertEqual(self.appointment.funding_source, FundingSource.PACKAGE)
        self.assertEqual(self.credits("p1"), 8)

    def cancel_hours_before(self, hours, appointment=None, actor=None):
        appointment = appointment or self.appointment
        return cancellation.cancel(
            self.db,
            appointment.id,
            actor or self.patient,
            "Feeling better",
            now=self.start - timedelta(hours=hours),
            notifier=self.sink,
        )

    def test_full_refund_at_30_hours(self):
        result = self.cancel_hours_before(30)
        self.assertEqual((result.refunded_credits, result.refund_percentage), (2, 100))
        self.assertEqual(result.appointment.status, AppointmentStatus.CANCELLED)
        self.assertEqual(result.appointment.cancelled_by, Role.PATIENT)
        self.assertEqual(result.appointment.cancellation_reason, "Feeling better")
        self.assertEqual(result.appointment.credits_refunded, 2)
        self.assertEqual(self.credits("p1"), 10)

        self.db.refresh(self.package)
        self.assertEqual((self.package.credits_used, self.package.credits_remaining), (0, 10))

        refund = self.db.query(Refund).one()
        self.assertEqual((refund.refund_type, refund.reason), ("FULL", "UNUSED_PACKAGE"))
        self.assertEqual((refund.patient_refund_amount, refund.doctor_compensation, refund.platform_fee), (2, 0, 0))

    def test_half_refund_at_18_hours(self):
        result = self.cancel_hours_before(18)
        self.assertEqual((result.refunded_credits, result.refund_percentage), (1, 50))
        self.assertEqual(self.credits("p1"), 9)

        self.db.refresh(self.package)
        self.assertEqual((self.package.credits_used, self.package.credits_remaining), (1, 9))

        refund = self.db.query(Refund).one()
        self.assertEqual((refund.refund_type, refund.reason), ("PARTIAL", "LATE_CANCELLATION"))
        self.assertEqual((refund.patient_refund_amount, refund.doctor_compensation, refund.platform_fee), (1, 0.5, 0.5))

    def test_no_refund_at_5_hours(self):
        entries_before = self.db.query(LedgerEntry).count()
        result = self.cancel_hours_before(5)
        self.assertEqual((result.refunded_credits, result.refund_percentage), (0, 0))
        self.assertEqual(result.appointment.status, AppointmentStatus.CANCELLED)
        self.assertEqual(self.db.query(LedgerEntry).count(), entries_before)
        self.assertEqual(self.db.query(Refund).count(), 0)
        self.assertEqual(self.credits("p1"), 8)

    def test_welcome_bonus_refund_leaves_package_alone(self):
        result = self.cancel_hours_before(30, appointment=self.bonus_appointment)
        self.assertEqual(result.refunded_credits, 2)
        refund_entry = (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.kind == LedgerKind.REFUND, LedgerEntry.appointment_id == self.bonus_appointment.id)
            .one()
        )
        self.assertIsNone(refund_entry.package_id)
        self.db.refresh(self.package)
        self.assertEqual((self.package.credits_used, self.package.credits_remaining), (2, 8))
        self.assertEqual(self.credits("p1"), 10)

    def test_refund_after_new_purchase_goes_to_active_package(self):
        family = self.purchase("p1", "family")
        self.db.refresh(self.package)
        self.assertEqual(self.package.status.value, "EXPIRED")
        self.assertEqual(family.credits_remaining, 24)

        self.cancel_hours_before(30)
        self.db.refresh(family)
        self.assertEqual(self.credits("p1"), 26)
        self.assertEqual(family.credits_remaining, 26)
        self.assertEqual(family.credits_used + family.credits_remaining, family.total_credits)
        refund_entry = self.db.query(LedgerEntry).filter(LedgerEntry.kind == LedgerKind.REFUND).one()
        self.assertEqual(refund_entry.package_id, family.id)

        booked = self.book_at("p1", "d1", self.start + timedelta(hours=3))
        self.assertEqual(booked.funding_source, FundingSource.PACKAGE)
        self.assertEqual(booked.package_id, family.id)

    def test_second_cancel_refunds_nothing(self):
        self.cancel_hours_before(30)
        with self.assertRaises(InvalidTransition):
            self.cancel_hours_before(29)
        self.assertEqual(self.credits("p1"), 10)
        self.assertEqual(self.db.query(Refund).count(), 1)
        self.assertEqual(ledger.verify_balance(self.db, "p1"), 10)

    def test_releases_slot_for_someone_else(self):
        self.cancel_hours_before(30)
        self.assertFalse(scheduler.check_conflict(self.db, "d1", self.start))
        rebooked = self.book_at("p2", "d1", self.start)
        self.assertEqual(rebooked.status, AppointmentStatus.SCHEDULED)

    def test_doctor_cancel_notifies_patient(self):
        self.cancel_hours_before(30, actor=Actor("d1", Role.DOCTOR))
        self.assertIn("Appointment Cancelled", self.sink.titles_for("p1"))
        self.assertIn("Credits refunded", self.sink.titles_for("p1"))

    def test_stranger_cannot_cancel(self):
        with self.assertRaises(PermissionDenied):
            self.cancel_hours_before(30, actor=Actor("p2", Role.PATIENT))
        self.assertEqual(self.credits("p1"), 8)

    def test_cannot_cancel_in_progress(self):
        doctor = Actor("d1", Role.DOCTOR)
        scheduler.confirm(self.db, self.appointment.id, actor=doctor, now=self.now)
        scheduler.start_session(self.db, self.appointment.id, actor=doctor, now=self.start)
        with self.assertRaises(InvalidTransition):
            self.cancel_hours_before(0)


if __name__ == "__main__":
    unittest.main()
