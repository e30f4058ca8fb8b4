import json
from decimal import Decimal
from unittest.mock import Mock

from django.test import RequestFactory, TestCase, override_settings
from django.utils import timezone

from hires.models import UpscaleJob
from hires.services import jobs
from hires.services.payment import RefundResult
from hires.services.upscaling import AdminOverride, UpscalingService
from hires.utils.exceptions import ArtifactError, RefundError, UpscaleNotAllowed, UpsamplerError, WebhookError

UPSCALE_ID = "0b5e8f4c-1d2a-4c3b-9e8f-7a6b5c4d3e2f"


def _create_job(**fields):
    job = jobs.create_job(
        {
            "image_url": "https://example.com/photo.jpg",
            "image_width": 1000,
            "image_height": 1000,
            "resolution": "4x",
            "email": "buyer@example.com",
            "amount_charged": Decimal("0.96"),
            "amount_cost": Decimal("0.16"),
        }
    )
    if fields:
        UpscaleJob.objects.filter(pk=job.pk).update(**fields)
        job.refresh_from_db()
    return job


def _paid_job(**fields):
    values = {
        "status": UpscaleJob.STATUS_PENDING,
        "payment_status": UpscaleJob.PAYMENT_PAID,
        "payment_intent_id": "pi_test_1",
    }
    values.update(fields)
    return _create_job(**values)


class UpscalingTestCase(TestCase):
    def setUp(self):
        self.client_mock = Mock()
        self.client_mock.precise_upscale.return_value = {"id": UPSCALE_ID, "status": "IN_QUEUE"}
        self.payments = Mock()
        self.payments.refund.return_value = RefundResult(
            refund_id="re_1", amount=Decimal("0.96"), status="succeeded"
        )
        self.downloads = Mock()
        self.service = UpscalingService(
            client=self.client_mock, payments=self.payments, downloads=self.downloads
        )


@override_settings(SITE_URL="https://api.example.com", UPSAMPLER_WEBHOOK_SECRET="")
class StartUpscalingTest(UpscalingTestCase):
    def test_paid_job_is_submitted(self):
        job = _paid_job()

        result = self.service.start_upscaling(job.job_id)

        self.assertEqual(result.status, UpscaleJob.STATUS_PROCESSING)
        self.assertEqual(result.upscale_job_id, UPSCALE_ID)
        self.assertIsNotNone(result.processing_started_at)
        self.client_mock.precise_upscale.assert_called_once_with(
            "https://example.com/photo.jpg", 4, "https://api.example.com/api/webhook/upsampler/"
        )

    def test_unpaid_job_is_refused(self):
        job = _create_job()

        with self.assertRaises(UpscaleNotAllowed):
            self.service.start_upscaling(job.job_id)

        self.client_mock.precise_upscale.assert_not_called()
        job.refresh_from_db()
        self.assertEqual(job.status, UpscaleJob.STATUS_AWAITING_PAYMENT)

    def test_admin_override_submits_unpaid_job_and_audits(self):
        job = _create_job()

        with self.assertLogs("hires.audit", level="WARNING") as logs:
            result = self.service.start_upscaling(
                job.job_id, override=AdminOverride(actor="ops", reason="paid by invoice")
            )

        self.assertEqual(result.status, UpscaleJob.STATUS_PROCESSING)
        self.assertEqual(result.payment_status, UpscaleJob.PAYMENT_PENDING)
        self.assertIn("ops", logs.output[0])
        self.assertIn("paid by invoice", logs.output[0])

    def test_override_requires_actor_and_reason(self):
        with self.assertRaises(ValueError):
            AdminOverride(actor="", reason="x")
        with self.assertRaises(ValueError):
            AdminOverride(actor="ops", reason="  ")

    def test_provider_id_is_stored_lower_case(self):
        self.client_mock.precise_upscale.return_value = {"id": UPSCALE_ID.upper(), "status": "IN_QUEUE"}
        job = _paid_job()

        result = self.service.start_upscaling(job.job_id)

        self.assertEqual(result.upscale_job_id, UPSCALE_ID)

    def test_already_submitted_job_is_not_resubmitted(self):
        job = _paid_job()
        self.service.start_upscaling(job.job_id)

        self.service.start_upscaling(job.job_id)

        self.assertEqual(self.client_mock.precise_upscale.call_count, 1)

    def test_submission_failure_marks_job_failed_without_refund(self):
        self.client_mock.precise_upscale.side_effect = UpsamplerError("Upsampler returned 500")
        job = _paid_job()

        result = self.service.start_upscaling(job.job_id)

        self.assertEqual(result.status, UpscaleJob.STATUS_FAILED)
        self.assertIn("500", result.failure_reason)
        self.payments.refund.assert_not_called()

    @override_settings(UPSAMPLER_WEBHOOK_SECRET="s3cret/value")
    def test_callback_url_carries_encoded_secret(self):
        self.assertEqual(
            self.service.callback_url(),
            "https://api.example.com/api/webhook/upsampler/?secret=s3cret%2Fvalue",
        )


@override_settings(UPSAMPLER_WEBHOOK_SECRET="hook-secret")
class UpsamplerWebhookTest(UpscalingTestCase):
    def setUp(self):
        super().setUp()
        self.factory = RequestFactory()
        self.job = _paid_job(status=UpscaleJob.STATUS_PROCESSING, upscale_job_id=UPSCALE_ID)

    def _request(self, data, secret="hook-secret", query_secret=None):
        path = "/api/webhook/upsampler/"
        if query_secret is not None:
            path = f"{path}?secret={query_secret}"
        headers = {"HTTP_X_WEBHOOK_SECRET": secret} if secret is not None else {}
        body = data if isinstance(data, bytes) else json.dumps(data).encode()
        return self.factory.post(path, data=body, content_type="application/json", **headers), body

    def _handle(self, data, **kwargs):
        request, body = self._request(data, **kwargs)
        return self.service.handle_webhook(request, body)

    def test_wrong_secret_is_unauthorized(self):
        with self.assertRaises(WebhookError) as ctx:
            self._handle({"id": UPSCALE_ID, "status": "SUCCESS"}, secret="nope")

        self.assertEqual(ctx.exception.status_code, 401)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_PROCESSING)

    def test_query_string_secret_is_accepted(self):
        response = self._handle(
            {"id": UPSCALE_ID, "status": "PROCESSING"}, secret=None, query_secret="hook-secret"
        )

        self.assertEqual(response.status_code, 200)

    def test_invalid_payloads_are_rejected(self):
        for body in [b"not json", {"status": "SUCCESS"}, {"id": "short", "status": "SUCCESS"}, []]:
            with self.assertRaises(WebhookError) as ctx:
                self._handle(body)
            self.assertEqual(ctx.exception.status_code, 400)

    def test_success_completes_and_stores(self):
        response = self._handle(
            {"id": UPSCALE_ID, "status": "SUCCESS", "imageUrl": "https://cdn.example.com/out.png", "creditCost": 0.25}
        )

        self.assertEqual(response.status_code, 200)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_COMPLETED)
        self.assertEqual(self.job.upscaled_url, "https://cdn.example.com/out.png")
        self.assertEqual(self.job.credits_used, Decimal("0.25"))
        self.assertIsNotNone(self.job.completed_at)
        self.downloads.store_processed_file.assert_called_once_with(
            "https://cdn.example.com/out.png", self.job.job_id
        )

    def test_storage_failure_leaves_job_completed(self):
        self.downloads.store_processed_file.side_effect = ArtifactError("not an image")

        with self.assertLogs("hires.services.upscaling", level="ERROR") as logs:
            self._handle({"id": UPSCALE_ID, "status": "SUCCESS", "imageUrl": "https://cdn.example.com/out.png"})

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_COMPLETED)
        self.assertTrue(any("delivery unresolved" in line for line in logs.output))
        self.payments.refund.assert_not_called()

    def test_replayed_success_after_delivery_is_noop(self):
        jobs.update_status(self.job.job_id, UpscaleJob.STATUS_COMPLETED, upscaled_url="https://cdn.example.com/out.png")
        jobs.update_job(self.job.job_id, artifact_path="/srv/hires/hires_x.png")

        self._handle({"id": UPSCALE_ID, "status": "SUCCESS", "imageUrl": "https://cdn.example.com/out.png"})

        self.downloads.store_processed_file.assert_not_called()

    def test_success_without_image_url_fails_and_refunds(self):
        self._handle({"id": UPSCALE_ID, "status": "SUCCESS"})

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_REFUNDED)
        self.payments.refund.assert_called_once()

    def test_failure_refunds_once(self):
        self._handle({"id": UPSCALE_ID, "status": "FAILED", "error": "model crashed"})
        self._handle({"id": UPSCALE_ID, "status": "FAILED", "error": "model crashed"})

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_REFUNDED)
        self.assertEqual(self.job.payment_status, UpscaleJob.PAYMENT_REFUNDED)
        self.assertEqual(self.job.failure_reason, "model crashed")
        self.assertEqual(self.job.refund_amount, Decimal("0.96"))
        self.assertEqual(self.payments.refund.call_count, 1)
        self.assertEqual(
            self.payments.refund.call_args[1]["idempotency_key"], f"hires-refund-{self.job.job_id}"
        )

    def test_upper_case_upscale_id_is_matched(self):
        response = self._handle({"id": UPSCALE_ID.upper(), "status": "FAILED", "error": "model crashed"})

        self.assertEqual(response.status_code, 200)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_REFUNDED)
        self.payments.refund.assert_called_once()

    def test_unknown_upscale_id_is_acknowledged(self):
        response = self._handle({"id": "ffffffff-1d2a-4c3b-9e8f-7a6b5c4d3e2f", "status": "FAILED"})

        self.assertEqual(response.status_code, 200)
        self.payments.refund.assert_not_called()

    def test_intermediate_status_is_logged_only(self):
        self._handle({"id": UPSCALE_ID, "status": "IN_PROGRESS"})

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, UpscaleJob.STATUS_PROCESSING)


class CompensateTest(UpscalingTestCase):
    def test_refund_failure_leaves_job_failed(self):
        self.payments.refund.side_effect = RefundError("card closed")
        job = _paid_job(status=UpscaleJob.STATUS_FAILED)

        with self.assertLogs("hires.services.upscaling", level="CRITICAL"):
            result = self.service.compensate(job.job_id)

        self.assertIsNone(result)
        job.refresh_from_db()
        self.assertEqual(job.status, UpscaleJob.STATUS_FAILED)
        self.assertIsNotNone(job.refund_requested_at)

    def test_automatic_retry_after_failed_attempt_is_skipped(self):
        self.payments.refund.side_effect = RefundError("card closed")
        job = _paid_job(status=UpscaleJob.STATUS_FAILED)
        with self.assertLogs("hires.services.upscaling", level="CRITICAL"):
            self.service.compensate(job.job_id)

        self.service.compensate(job.job_id)

        self.assertEqual(self.payments.refund.call_count, 1)

    def test_forced_retry_uses_fresh_idempotency_key(self):
        job = _paid_job(status=UpscaleJob.STATUS_FAILED, refund_requested_at=timezone.now())

        result = self.service.compensate(job.job_id, force=True)

        self.assertEqual(result.refund_id, "re_1")
        key = self.payments.refund.call_args[1]["idempotency_key"]
        self.assertTrue(key.startswith(f"hires-refund-{job.job_id}-"))
        job.refresh_from_db()
        self.assertEqual(job.status, UpscaleJob.STATUS_REFUNDED)

    def test_unpaid_failed_job_is_not_refunded(self):
        job = _create_job(status=UpscaleJob.STATUS_FAILED)

        self.assertIsNone(self.service.compensate(job.job_id))
        self.payments.refund.assert_not_called()

    def test_retry_delivery_requires_completed_output(self):
        job = _paid_job(status=UpscaleJob.STATUS_PROCESSING)

        with self.assertRaises(ArtifactError):
            self.service.retry_delivery(job.job_id)

    def test_retry_delivery_stores_again(self):
        job = _paid_job(status=UpscaleJob.STATUS_COMPLETED, upscaled_url="https://cdn.example.com/out.png")

        self.service.retry_delivery(job.job_id)

        self.downloads.store_processed_file.assert_called_once_with(
            "https://cdn.example.com/out.png", job.job_id
        )
