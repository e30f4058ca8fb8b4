import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from hires.models import UpscaleJob
from hires.services import jobs

WEBHOOK_SECRET = "whsec_test_secret"
WEBHOOK_URL = "/api/webhook/stripe/"


def _sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _event(event_type, obj):
    return {
        "id": f"evt_{event_type.replace('.', '_')}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@override_settings(STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET, STRIPE_SECRET_KEY="sk_test_123")
class StripeWebhookViewsTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.job = jobs.create_job(
            {
                "image_url": "https://example.com/photo.jpg",
                "image_width": 1000,
                "image_height": 1000,
                "resolution": "4x",
                "amount_charged": Decimal("0.96"),
                "amount_cost": Decimal("0.16"),
            }
        )
        jobs.update_job(self.job.job_id, checkout_session_id="cs_test_1")

    def _post(self, event, signature=None):
        payload = json.dumps(event)
        return self.client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=signature or _sign(payload),
        )

    def _session(self, **overrides):
        session = {
            "id": "cs_test_1",
            "object": "checkout.session",
            "payment_intent": "pi_test_1",
            "amount_total": 96,
            "customer_details": {"email": "buyer@example.com"},
            "metadata": {"job_id": self.job.job_id, "resolution": "4x", "source": "hires"},
        }
        session.update(overrides)
        return session

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_checkout_completed_marks_job_paid(self, mock_start):
        response = self._post(_event("checkout.session.completed", self._session()))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "received"})
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "pending")
        self.assertEqual(self.job.payment_status, "paid")
        self.assertEqual(self.job.payment_intent_id, "pi_test_1")
        self.assertEqual(self.job.email, "buyer@example.com")
        self.assertIsNotNone(self.job.paid_at)
        mock_start.assert_called_once_with(self.job.job_id)

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_replayed_checkout_completed_is_idempotent(self, mock_start):
        event = _event("checkout.session.completed", self._session())

        self._post(event)
        self.job.refresh_from_db()
        paid_at = self.job.paid_at
        response = self._post(event)

        self.assertEqual(response.status_code, 200)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "pending")
        self.assertEqual(self.job.paid_at, paid_at)
        self.assertEqual(mock_start.call_count, 1)

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_checkout_completed_resolves_job_by_session_id(self, mock_start):
        self._post(_event("checkout.session.completed", self._session(metadata={})))

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "pending")
        mock_start.assert_called_once()

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_amount_mismatch_keeps_fixed_price(self, _mock_start):
        with self.assertLogs("hires.services.payment", level="WARNING") as logs:
            self._post(_event("checkout.session.completed", self._session(amount_total=50)))

        self.job.refresh_from_db()
        self.assertEqual(self.job.amount_charged, Decimal("0.96"))
        self.assertTrue(any("differs" in line for line in logs.output))

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_existing_email_is_not_overwritten(self, _mock_start):
        jobs.update_job(self.job.job_id, email="first@example.com")

        self._post(_event("checkout.session.completed", self._session()))

        self.job.refresh_from_db()
        self.assertEqual(self.job.email, "first@example.com")

    @patch("hires.services.upscaling.UpscalingService.handle_payment_completed")
    def test_events_from_other_sources_are_ignored(self, mock_start):
        session = self._session(metadata={"job_id": self.job.job_id, "source": "other-shop"})

        response = self._post(_event("checkout.session.completed", session))

        self.assertEqual(response.status_code, 200)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "awaiting_payment")
        mock_start.assert_not_called()

    def test_invalid_signature_is_rejected(self):
        event = _event("checkout.session.completed", self._session())

        response = self._post(event, signature=_sign(json.dumps(event), secret="whsec_wrong"))

        self.assertEqual(response.status_code, 400)
        self.job.refresh_from_db()
        self.assertEqual(self.job.payment_status, "pending")

    def test_missing_signature_is_rejected(self):
        response = self.client.post(
            WEBHOOK_URL,
            data=json.dumps(_event("checkout.session.completed", self._session())),
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 400)

    @override_settings(STRIPE_WEBHOOK_SECRET="")
    def test_missing_webhook_secret_is_server_error(self):
        payload = json.dumps(_event("checkout.session.completed", self._session()))

        response = self.client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=_sign(payload),
        )

        self.assertEqual(response.status_code, 500)
        self.job.refresh_from_db()
        self.assertEqual(self.job.payment_status, "pending")

    def test_payment_failed_marks_payment_failed(self):
        intent = {
            "id": "pi_test_1",
            "object": "payment_intent",
            "metadata": {"job_id": self.job.job_id, "source": "hires"},
            "last_payment_error": {"message": "Your card was declined."},
        }

        self._post(_event("payment_intent.payment_failed", intent))

        self.job.refresh_from_db()
        self.assertEqual(self.job.payment_status, "failed")
        self.assertEqual(self.job.status, "awaiting_payment")

    def test_payment_succeeded_marks_paid_without_moving_status(self):
        intent = {
            "id": "pi_test_1",
            "object": "payment_intent",
            "metadata": {"job_id": self.job.job_id, "source": "hires"},
        }

        self._post(_event("payment_intent.succeeded", intent))

        self.job.refresh_from_db()
        self.assertEqual(self.job.payment_status, "paid")
        self.assertEqual(self.job.payment_intent_id, "pi_test_1")
        self.assertEqual(self.job.status, "awaiting_payment")

    def test_charge_refunded_on_failed_job(self):
        jobs.update_payment_status(self.job.job_id, "paid", payment_intent_id="pi_test_1")
        jobs.update_status(self.job.job_id, "failed")
        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_test_1", "amount_refunded": 96}

        self._post(_event("charge.refunded", charge))

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "refunded")
        self.assertEqual(self.job.payment_status, "refunded")
        self.assertEqual(self.job.refund_amount, Decimal("0.96"))

    def test_charge_refunded_on_completed_job_keeps_status(self):
        jobs.update_payment_status(self.job.job_id, "paid", payment_intent_id="pi_test_1")
        jobs.update_status(self.job.job_id, "processing")
        jobs.update_status(self.job.job_id, "completed")
        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_test_1", "amount_refunded": 96}

        self._post(_event("charge.refunded", charge))

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "completed")
        self.assertEqual(self.job.payment_status, "refunded")
        self.assertIsNotNone(self.job.refunded_at)

    def test_checkout_expired_abandons_job(self):
        self._post(_event("checkout.session.expired", self._session()))

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "abandoned")

    def test_unhandled_event_type_is_acknowledged(self):
        response = self._post(_event("customer.created", {"id": "cus_1"}))

        self.assertEqual(response.status_code, 200)
