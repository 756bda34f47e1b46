import unittest


from app.core.security import _decide_role, parse_role
from app.models.account import Role
from app.services.access import ROLE_ACTIONS, Actor, ensure_allowed
from app.core.errors import PermissionDenied


class TestRoleResolution(unittest.TestCase):
    def test_db_admin_wins(self):
        role, reason = _decide_role(claim_role=Role.PATIENT, db_role=Role.ADMIN)
        self.assertEqual(role, Role.ADMIN)
        self.assertEqual(reason, "db_account")

    def test_stored_role_not_overridden_by_claim(self):
        role, reason = _decide_role(claim_role=Role.ADMIN, db_role=Role.DOCTOR)
        self.assertEqual(role, Role.DOCTOR)
        self.assertEqual(reason, "db_account")

    def test_jwt_claim_assigns_unassigned_account(self):
        role, reason = _decide_role(claim_role=Role.DOCTOR, db_role=Role.UNASSIGNED)
        self.assertEqual(role, Role.DOCTOR)
        self.assertEqual(reason, "jwt_claim")

    def test_jwt_claim_for_new_account(self):
        role, reason = _decide_role(claim_role=Role.PATIENT, db_role=None)
        self.assertEqual(role, Role.PATIENT)
        self.assertEqual(reason, "jwt_claim")

    def test_default_unassigned(self):
        role, reason = _decide_role(claim_role=None, db_role=None)
        self.assertEqual(role, Role.UNASSIGNED)
        self.assertEqual(reason, "default")

    def test_parse_role(self):
        self.assertEqual(parse_role("doctor"), Role.DOCTOR)
        self.assertEqual(parse_role(" Patient "), Role.PATIENT)
        self.assertIsNone(parse_role("authenticated"))
        self.assertIsNone(parse_role(None))


class TestRoleActions(unittest.TestCase):
    def test_every_role_has_an_entry(self):
        self.assertEqual(set(ROLE_ACTIONS), set(Role))

    def test_unassigned_can_do_nothing(self):
        with self.assertRaises(PermissionDenied):
            ensure_allowed(Actor("u1", Role.UNASSIGNED), "book")

    def test_doctor_cannot_book(self):
        with self.assertRaises(PermissionDenied):
            ensure_allowed(Actor("d1", Role.DOCTOR), "book")
        ensure_allowed(Actor("d1", Role.DOCTOR), "complete")


if __name__ == "__main__":
    unittest.main()
