import unittest
from datetime import timedelta

from engine_fixtures import EngineTestCase

from app.core.errors import AccountNotFound, UnknownPlan, ValidationError
from app.models.credit_package import CreditPackage, PackageStatus, PackageType
from app.models.payment import PaymentConfirmation
from app.services.payments import on_payment_confirmed


class TestPaymentConfirmation(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.open_account("p1")

    def confirm(self, plan_id, amount, reference, now=None, **kwargs):
        return on_payment_confirmed(
            self.db,
            self.manager,
            "p1",
            plan_id,
            amount,
            reference,
            now=now or self.now,
            notifier=self.sink,
            **kwargs,
        )

    def test_retried_delivery_grants_once(self):
        first = self.confirm("starter", 2500, "mpesa-001")
        again = self.confirm("starter", 2500, "mpesa-001", now=self.now + timedelta(minutes=2))
        self.assertFalse(first.duplicate)
        self.assertTrue(again.duplicate)
        self.assertEqual(again.package_id, first.package_id)
        self.assertEqual(self.credits("p1"), 12)
        self.assertEqual(self.db.query(CreditPackage).count(), 1)

    def test_double_submit_within_window(self):
        self.confirm("starter", 2500, "mpesa-001")
        again = self.confirm("starter", 2500, "mpesa-002", now=self.now + timedelta(minutes=4))
        self.assertTrue(again.duplicate)
        self.assertEqual(again.reference_id, "mpesa-001")
        self.assertEqual(self.credits("p1"), 12)

    def test_same_plan_after_window_is_new_purchase(self):
        self.confirm("starter", 2500, "mpesa-001")
        later = self.confirm("starter", 2500, "mpesa-002", now=self.now + timedelta(minutes=6))
        self.assertFalse(later.duplicate)
        self.assertEqual(self.credits("p1"), 22)
        self.assertEqual(self.db.query(PaymentConfirmation).count(), 2)

    def test_difference_payment_upgrades(self):
        first = self.confirm("starter", 2500, "mpesa-001")
        result = self.confirm("wellness", 2000, "mpesa-002")
        self.assertEqual(result.kind, "upgrade")

        old = self.db.query(CreditPackage).filter(CreditPackage.id == first.package_id).one()
        new = self.db.query(CreditPackage).filter(CreditPackage.id == result.package_id).one()
        self.assertEqual(old.status, PackageStatus.EXPIRED)
        self.assertEqual(new.package_type, PackageType.WELLNESS)
        self.assertEqual(new.total_credits, 30)
        self.assertEqual(self.credits("p1"), 2 + 10 + 20)

    def test_underpayment_rejected(self):
        with self.assertRaises(ValidationError):
            self.confirm("family", 1000, "mpesa-001")
        self.assertEqual(self.db.query(PaymentConfirmation).count(), 0)
        self.assertEqual(self.credits("p1"), 2)

    def test_bad_input(self):
        with self.assertRaises(UnknownPlan):
            self.confirm("platinum", 9000, "mpesa-001")
        with self.assertRaises(ValidationError):
            self.confirm("starter", 2500, "  ")
        with self.assertRaises(AccountNotFound):
            on_payment_confirmed(self.db, self.manager, "ghost", "starter", 2500, "mpesa-009", now=self.now)

    def test_subscription_payment_allocates_monthly_package(self):
        result = self.confirm("family", 3800, "sub-inv-1", subscription=True)
        self.assertEqual(result.kind, "subscription")
        package = self.db.query(CreditPackage).filter(CreditPackage.id == result.package_id).one()
        self.assertEqual(package.source, "subscription")
        self.assertEqual(self.credits("p1"), 18)


if __name__ == "__main__":
    unittest.main()
