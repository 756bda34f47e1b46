import json
import unittest
from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from engine_fixtures import EngineTestCase

from app.api.deps import get_notifier
from app.api.endpoints.billing import sign_payload
from app.core.database import get_db
from app.core.settings import settings
from main import app


SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "test-webhook-secret"


def _token(sub: str, role: str | None = None) -> str:
    claims = {
        "sub": sub,
        "aud": "authenticated",
        "email": f"{sub}@example.com",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    if role:
        claims["app_metadata"] = {"role": role}
    return jwt.encode(claims, SECRET, algorithm="HS256")


class TestApi(EngineTestCase):
    def setUp(self):
        super().setUp()
        self._saved = (settings.jwt_secret, settings.jwt_audience, settings.payment_webhook_secret)
        settings.jwt_secret = SECRET
        settings.jwt_audience = "authenticated"
        settings.payment_webhook_secret = WEBHOOK_SECRET

        def override_db():
            yield self.db

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_notifier] = lambda: self.sink
        self.client = TestClient(app)

        self.patient = {"Authorization": f"Bearer {_token('p1', 'patient')}"}
        self.patient2 = {"Authorization": f"Bearer {_token('p2', 'patient')}"}
        self.doctor = {"Authorization": f"Bearer {_token('d1', 'doctor')}"}

        # A weekday slot a week out, so every lead-time and refund window is clear.
        self.day = (datetime.now(timezone.utc) + timedelta(days=7)).date()

    def tearDown(self):
        app.dependency_overrides.clear()
        settings.jwt_secret, settings.jwt_audience, settings.payment_webhook_secret = self._saved
        super().tearDown()

    def add_slot(self) -> int:
        resp = self.client.post(
            "/api/doctors/me/availability",
            json={"day_of_week": self.day.weekday(), "start_time": "10:00", "end_time": "10:30"},
            headers=self.doctor,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["id"]

    def book(self, slot_id: int, headers=None):
        return self.client.post(
            "/api/appointments",
            json={"doctor_id": "d1", "slot_id": slot_id, "appointment_date": self.day.isoformat()},
            headers=headers or self.patient,
        )

    def webhook(self, payload: dict, secret: str = WEBHOOK_SECRET):
        raw = json.dumps(payload).encode("utf-8")
        return self.client.post(
            "/api/billing/payments/confirmed",
            content=raw,
            headers={"Content-Type": "application/json", "X-Signature": sign_payload(raw, secret)},
        )

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})

    def test_requires_token(self):
        self.assertEqual(self.client.get("/api/credits/balance").status_code, 401)
        bad = {"Authorization": "Bearer not-a-jwt"}
        self.assertEqual(self.client.get("/api/credits/balance", headers=bad).status_code, 401)

    def test_first_request_opens_account(self):
        resp = self.client.get("/api/credits/balance", headers=self.patient)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["credits"], 2)
        self.assertIsNone(resp.json()["active_package"])

        history = self.client.get("/api/credits/history", headers=self.patient).json()
        self.assertEqual([e["kind"] for e in history["entries"]], ["WELCOME_BONUS"])

        check = self.client.get("/api/credits/check", headers=self.patient).json()
        self.assertTrue(check["has_credits"])

    def test_book_and_cancel(self):
        slot_id = self.add_slot()
        resp = self.book(slot_id)
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["status"], "SCHEDULED")
        self.assertEqual(body["funding_source"], "WELCOME_BONUS")
        self.assertEqual(self.client.get("/api/credits/balance", headers=self.patient).json()["credits"], 0)

        taken = self.book(slot_id, headers=self.patient2)
        self.assertEqual(taken.status_code, 409)
        self.assertEqual(taken.json()["code"], "slot_unavailable")

        cancel = self.client.post(
            f"/api/appointments/{body['id']}/cancel", json={"reason": "Travelling"}, headers=self.patient
        )
        self.assertEqual(cancel.status_code, 200, cancel.text)
        self.assertEqual(cancel.json()["refunded_credits"], 2)
        self.assertEqual(cancel.json()["appointment"]["status"], "CANCELLED")

        again = self.client.post(f"/api/appointments/{body['id']}/cancel", json={}, headers=self.patient)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "invalid_transition")

    def test_error_codes(self):
        slot_id = self.add_slot()
        self.assertEqual(self.book(slot_id).status_code, 200)

        other_slot = self.client.post(
            "/api/doctors/me/availability",
            json={"day_of_week": self.day.weekday(), "start_time": "11:00", "end_time": "11:30"},
            headers=self.doctor,
        ).json()["id"]
        broke = self.book(other_slot)
        self.assertEqual(broke.status_code, 400)
        self.assertEqual(broke.json()["code"], "insufficient_credits")

        missing = self.client.post("/api/appointments/999/confirm", headers=self.doctor)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "appointment_not_found")

        doctor_books = self.book(other_slot, headers=self.doctor)
        self.assertEqual(doctor_books.status_code, 403)
        self.assertEqual(doctor_books.json()["code"], "forbidden")

    def test_doctor_flow_and_earnings(self):
        slot_id = self.add_slot()
        appointment_id = self.book(slot_id).json()["id"]
        confirmed = self.client.post(f"/api/appointments/{appointment_id}/confirm", headers=self.doctor)
        self.assertEqual(confirmed.json()["status"], "CONFIRMED")

        early = self.client.post(f"/api/appointments/{appointment_id}/start", headers=self.doctor)
        self.assertEqual(early.status_code, 400)
        self.assertEqual(early.json()["code"], "too_early_to_start")

        earnings = self.client.get("/api/doctors/me/earnings", headers=self.doctor)
        self.assertEqual(earnings.status_code, 200)
        self.assertEqual(earnings.json()["completed_consultations"], 0)
        self.assertEqual(self.client.get("/api/doctors/me/earnings", headers=self.patient).status_code, 403)

        slots = self.client.get(f"/api/doctors/d1/slots?on={self.day.isoformat()}", headers=self.patient)
        self.assertEqual(slots.json()["slots"], [])

    def test_plans_and_quote(self):
        plans = self.client.get("/api/packages/plans").json()
        self.assertEqual([p["plan_id"] for p in plans["plans"]], ["starter", "family", "wellness"])
        self.assertEqual(self.client.get("/api/packages/status", headers=self.patient).json(), None)

        quote = self.client.get("/api/packages/upgrade-quote?plan_id=family", headers=self.patient).json()
        self.assertFalse(quote["eligible"])
        self.assertEqual(quote["reason"], "no_active_package")

        unknown = self.client.get("/api/packages/upgrade-quote?plan_id=gold", headers=self.patient)
        self.assertEqual(unknown.status_code, 422)
        self.assertEqual(unknown.json()["code"], "unknown_plan")

    def test_payment_webhook(self):
        self.client.get("/api/credits/balance", headers=self.patient)
        payload = {"account_id": "p1", "plan_id": "starter", "amount_paid": 2500, "reference_id": "mpesa-77"}

        forged = self.webhook(payload, secret="wrong")
        self.assertEqual(forged.status_code, 400)

        first = self.webhook(payload)
        self.assertEqual(first.status_code, 200, first.text)
        self.assertFalse(first.json()["duplicate"])
        retry = self.webhook(payload)
        self.assertTrue(retry.json()["duplicate"])

        balance = self.client.get("/api/credits/balance", headers=self.patient).json()
        self.assertEqual(balance["credits"], 12)
        self.assertEqual(balance["active_package"]["package_type"], "STARTER")
        status = self.client.get("/api/packages/status", headers=self.patient).json()
        self.assertEqual(status["credits_remaining"], 10)


if __name__ == "__main__":
    unittest.main()
