"""Upsampler orchestration.

Submits paid jobs to Upsampler, consumes its completion webhooks and, when
processing fails after payment, refunds the customer. Each step re-reads
the job so replayed webhooks converge on the same state.
"""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import quote

from django.conf import settings
from django.utils import timezone
from django.utils.crypto import constant_time_compare

from hires import notifications
from hires.models import UpscaleJob
from hires.services import jobs
from hires.services.downloads import DownloadService
from hires.services.payment import PaymentService, RefundResult
from hires.utils.exceptions import (
    ArtifactError,
    InvalidTransition,
    JobNotFound,
    RefundError,
    UpscaleNotAllowed,
    UpsamplerError,
    WebhookError,
)
from hires.utils.upsampler_client import UpsamplerClient
from hires.webhooks.router import webhook_ack

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("hires.audit")

UPSAMPLER_ID_PATTERN = re.compile(r"^[a-f0-9\-]{36}$", re.IGNORECASE)
WEBHOOK_PATH = "/api/webhook/upsampler/"
AUTO_REFUND_REASON = "Automatic refund: upscaling failed"


@dataclass(frozen=True)
class AdminOverride:
    """Operator authorisation to upscale a job whose payment is not confirmed."""

    actor: str
    reason: str

    def __post_init__(self):
        if not (self.actor or "").strip():
            raise ValueError("Admin override requires an actor")
        if not (self.reason or "").strip():
            raise ValueError("Admin override requires a reason")


class UpscalingService:
    def __init__(
        self,
        client: Optional[UpsamplerClient] = None,
        payments: Optional[PaymentService] = None,
        downloads: Optional[DownloadService] = None,
    ):
        self.client = client or UpsamplerClient()
        self.payments = payments or PaymentService()
        self.downloads = downloads or DownloadService()

    # --- Submission ----------------------------------------------------------

    def handle_payment_completed(self, job_id):
        logger.info(f"Payment completed for job {job_id}, starting upscaling")
        return self.start_upscaling(job_id)

    def callback_url(self) -> str:
        url = f"{settings.SITE_URL}{WEBHOOK_PATH}"
        secret = settings.UPSAMPLER_WEBHOOK_SECRET
        if secret:
            url = f"{url}?secret={quote(secret, safe='')}"
        return url

    def _image_source(self, job: UpscaleJob):
        """Image URL to send to the provider, preferring catalog metadata."""
        if job.source_image is not None:
            url = job.source_image.public_url(settings.SITE_URL)
            if url:
                return url
        return job.image_url

    def start_upscaling(self, job_id, override: Optional[AdminOverride] = None) -> UpscaleJob:
        job = jobs.get_job(job_id)

        if override is not None:
            audit_logger.warning(
                f"Admin override by {override.actor}: upscaling job {job_id} "
                f"(status={job.status}, payment_status={job.payment_status}); reason: {override.reason}"
            )
        elif not job.is_paid:
            raise UpscaleNotAllowed(
                f"Job {job_id} payment status is {job.payment_status}, refusing to upscale"
            )

        if job.upscale_job_id:
            logger.info(f"Job {job_id} already submitted as {job.upscale_job_id}")
            return job
        if job.status not in (UpscaleJob.STATUS_AWAITING_PAYMENT, UpscaleJob.STATUS_PENDING):
            logger.warning(f"Job {job_id} is {job.status}, not submitting to Upsampler")
            return job

        image_url = self._image_source(job)
        factor = settings.HIRES_RESOLUTION_MULTIPLIERS.get(job.resolution)

        try:
            if not image_url:
                raise UpsamplerError(f"Job {job_id} has no reachable image URL")
            result = self.client.precise_upscale(image_url, factor, self.callback_url())
        except UpsamplerError as exc:
            logger.error(f"Upsampler submission failed for job {job_id}: {exc}")
            return jobs.update_status(
                job_id,
                UpscaleJob.STATUS_FAILED,
                failure_reason=str(exc)[:1000],
                failed_at=timezone.now(),
            )

        logger.info(f"Job {job_id} submitted to Upsampler as {result['id']}")
        return jobs.update_status(
            job_id,
            UpscaleJob.STATUS_PROCESSING,
            upscale_job_id=str(result["id"]).lower(),
            processing_started_at=timezone.now(),
        )

    # --- Webhook -------------------------------------------------------------

    def _authenticate(self, request):
        secret = settings.UPSAMPLER_WEBHOOK_SECRET
        if not secret:
            return
        provided = request.headers.get("X-Webhook-Secret") or request.GET.get("secret", "")
        if not constant_time_compare(provided, secret):
            raise WebhookError(401, "Unauthorized")

    def handle_webhook(self, request, payload: bytes):
        self._authenticate(request)

        try:
            data = json.loads(payload)
        except ValueError:
            raise WebhookError(400, "Invalid JSON")

        if not isinstance(data, dict) or not data.get("id") or not data.get("status"):
            raise WebhookError(400, "Missing required fields")
        if not UPSAMPLER_ID_PATTERN.match(str(data["id"])):
            raise WebhookError(400, "Invalid job id")

        logger.debug(f"Upsampler webhook payload: {data}")
        self.handle_result(data)
        return webhook_ack()

    def handle_result(self, data: dict) -> None:
        upscale_id = str(data["id"])
        try:
            job = jobs.get_job_by_upscale_id(upscale_id)
        except JobNotFound:
            logger.warning(f"Upsampler webhook for unknown job {upscale_id}")
            return

        status = str(data["status"]).upper()
        try:
            if status == "SUCCESS":
                image_url = data.get("imageUrl")
                if image_url:
                    self._complete(job, image_url, data.get("creditCost"))
                else:
                    self._fail(job, "Upsampler reported success without an image URL")
            elif status == "FAILED":
                self._fail(job, str(data.get("error") or "Upscaling failed"))
            else:
                logger.info(f"Upsampler job {upscale_id} reported status {status}")
        except InvalidTransition as exc:
            logger.warning(f"Upsampler webhook not applied to job {job.job_id}: {exc}")

    def _complete(self, job: UpscaleJob, image_url, credit_cost):
        if job.status != UpscaleJob.STATUS_COMPLETED:
            fields = {"upscaled_url": image_url, "completed_at": timezone.now()}
            if credit_cost is not None:
                try:
                    fields["credits_used"] = Decimal(str(credit_cost))
                except InvalidOperation:
                    logger.warning(f"Job {job.job_id}: ignoring creditCost {credit_cost!r}")
            job = jobs.update_status(job.job_id, UpscaleJob.STATUS_COMPLETED, **fields)

        if job.artifact_path:
            logger.info(f"Job {job.job_id} already delivered")
            return

        try:
            self.downloads.store_processed_file(job.upscaled_url or image_url, job.job_id)
        except ArtifactError as exc:
            logger.error(
                f"Job {job.job_id} completed but delivery unresolved: {exc}. "
                "Retry delivery from the admin once the cause is fixed."
            )

    def _fail(self, job: UpscaleJob, reason):
        if job.status != UpscaleJob.STATUS_FAILED:
            job = jobs.update_status(
                job.job_id,
                UpscaleJob.STATUS_FAILED,
                failure_reason=reason[:1000],
                failed_at=timezone.now(),
            )
        logger.warning(f"Upscaling failed for job {job.job_id}: {reason}")
        self.compensate(job.job_id)

    # --- Compensation --------------------------------------------------------

    def compensate(self, job_id, force=False, reason=AUTO_REFUND_REASON) -> Optional[RefundResult]:
        """
        Refund a failed job that was paid for.

        At most one automatic attempt is made per job; `force` lets an
        operator retry after a failed attempt.
        """
        job = jobs.claim_refund(job_id, force=force)
        if job is None:
            logger.info(f"Job {job_id} not eligible for refund")
            return None

        idempotency_key = f"hires-refund-{job.job_id}"
        if force:
            idempotency_key = f"{idempotency_key}-{int(timezone.now().timestamp())}"

        try:
            result = self.payments.refund(job, reason, idempotency_key=idempotency_key)
        except RefundError as exc:
            logger.critical(
                f"Refund failed for job {job_id} (payment intent {job.payment_intent_id}): {exc}. "
                "Manual refund required."
            )
            return None

        job = jobs.mark_refunded(job_id, result.amount, reason)
        logger.info(f"Refund {result.refund_id} issued for job {job_id} (${result.amount})")
        notifications.send_refund_notification(job)
        return result

    def retry_delivery(self, job_id):
        """Store the provider output again for a completed, undelivered job."""
        job = jobs.get_job(job_id)
        if job.status != UpscaleJob.STATUS_COMPLETED or not job.upscaled_url:
            raise ArtifactError(f"Job {job_id} has no completed output to deliver")
        return self.downloads.store_processed_file(job.upscaled_url, job.job_id)


def handle_upsampler_webhook(request, payload):
    return UpscalingService().handle_webhook(request, payload)
