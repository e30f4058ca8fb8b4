"""Stripe payment orchestration.

Creates Checkout Sessions for jobs, turns verified Stripe webhook events into
job/payment state changes and issues refunds. Event handling is idempotent:
Stripe redelivers events, so every handler reads the current job state and
only acts on transitions that have not happened yet.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe
from django.conf import settings
from django.utils import timezone

from hires.models import UpscaleJob
from hires.services import jobs
from hires.signals import emit_payment_completed
from hires.utils.exceptions import (
    InvalidPrice,
    InvalidTransition,
    JobNotFound,
    PaymentUnavailable,
    PricingError,
    RefundError,
    WebhookError,
)
from hires.utils.pricing import CostCalculator
from hires.webhooks.router import webhook_ack

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    checkout_url: str
    amount: Decimal


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: Decimal
    status: str


class PaymentService:
    """Stripe-backed payments for upscale jobs"""

    def __init__(
        self,
        calculator: Optional[CostCalculator] = None,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        frontend_url: Optional[str] = None,
    ):
        self.calculator = calculator or CostCalculator()
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.source = settings.STRIPE_METADATA_SOURCE
        self._event_handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "payment_intent.succeeded": self._on_payment_succeeded,
            "payment_intent.payment_failed": self._on_payment_failed,
            "charge.refunded": self._on_charge_refunded,
            "checkout.session.expired": self._on_checkout_expired,
        }

    @property
    def supported_events(self):
        return list(self._event_handlers)

    # --- Checkout ------------------------------------------------------------

    def create_checkout(self, job: UpscaleJob, email: Optional[str] = None) -> CheckoutSession:
        """
        Create a Stripe Checkout Session for `job` and store its id.

        The price is recomputed and must equal the amount fixed on the job
        when it was created.
        """
        if not self.api_key:
            raise PaymentUnavailable("Stripe secret key not configured")

        quote = self.calculator.price(job.image_width, job.image_height, job.resolution)
        if quote.is_zero:
            raise InvalidPrice(
                f"Zero price for job {job.job_id} "
                f"({job.image_width}x{job.image_height} {job.resolution})"
            )
        if quote.customer_price != job.amount_charged:
            raise PricingError(
                f"Price drift for job {job.job_id}: "
                f"quoted {quote.customer_price}, job has {job.amount_charged}"
            )

        metadata = {
            "job_id": job.job_id,
            "resolution": job.resolution,
            "source": self.source,
        }
        params = {
            "api_key": self.api_key,
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": settings.STRIPE_CURRENCY,
                        "product_data": {
                            "name": f"High-Resolution Image ({job.resolution})",
                            "description": (
                                f"Upscaled from {job.image_width}x{job.image_height} "
                                f"to {quote.output_width}x{quote.output_height} pixels"
                            ),
                        },
                        "unit_amount": quote.amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "success_url": (
                f"{self.frontend_url}/hires/success"
                f"?job_id={job.job_id}&session_id={{CHECKOUT_SESSION_ID}}"
            ),
            "cancel_url": f"{self.frontend_url}/hires/cancelled?job_id={job.job_id}",
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        email = (email or job.email or "").strip()
        if email:
            params["customer_email"] = email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.error(f"Stripe checkout creation failed for job {job.job_id}: {exc}")
            raise PaymentUnavailable(f"Stripe error: {exc}")

        jobs.update_job(job.job_id, checkout_session_id=session.id)
        logger.info(
            f"Created checkout session {session.id} for job {job.job_id} (${job.amount_charged})"
        )
        return CheckoutSession(
            session_id=session.id,
            checkout_url=session.url,
            amount=job.amount_charged,
        )

    # --- Webhooks ------------------------------------------------------------

    def construct_event(self, payload: bytes, sig_header: str) -> dict:
        """
        Verify the Stripe signature over the raw payload and parse it.

        Raises `WebhookError` with 500 when no signing secret is configured
        and 400 for a bad signature or malformed body.
        """
        if not self.webhook_secret:
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise WebhookError(500, "Webhook not configured")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                sig_header,
                self.webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError:
            raise WebhookError(400, "Invalid signature")
        except ValueError:
            raise WebhookError(400, "Invalid payload")

        if not isinstance(event, dict) or "type" not in event:
            raise WebhookError(400, "Invalid payload")
        return event

    def handle_event(self, event: dict) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"Stripe event {event.get('id', '?')} ({event_type})")

        handler = self._event_handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring unhandled Stripe event type {event_type}")
            return

        metadata = obj.get("metadata") or {}
        source = metadata.get("source")
        if source and source != self.source:
            logger.debug(f"Ignoring Stripe event {event_type} from source '{source}'")
            return

        try:
            handler(obj)
        except InvalidTransition as exc:
            logger.warning(f"Stripe event {event_type} not applied: {exc}")

    def _resolve_job(self, metadata, session_id=None, payment_intent_id=None):
        job_id = (metadata or {}).get("job_id")
        lookups = []
        if job_id:
            lookups.append((jobs.get_job, job_id))
        if session_id:
            lookups.append((jobs.get_job_by_checkout_session, session_id))
        if payment_intent_id:
            lookups.append((jobs.get_job_by_payment_intent, payment_intent_id))

        for lookup, value in lookups:
            try:
                return lookup(value)
            except JobNotFound:
                continue
        return None

    def _on_checkout_completed(self, session):
        session_id = session.get("id", "")
        payment_intent_id = session.get("payment_intent") or ""
        job = self._resolve_job(session.get("metadata"), session_id=session_id)
        if job is None:
            logger.warning(f"checkout.session.completed for unknown job (session {session_id})")
            return

        payment_fields = {}
        if session_id and not job.checkout_session_id:
            payment_fields["checkout_session_id"] = session_id
        if payment_intent_id and not job.payment_intent_id:
            payment_fields["payment_intent_id"] = payment_intent_id
        job = jobs.update_payment_status(job.job_id, UpscaleJob.PAYMENT_PAID, **payment_fields)

        amount_total = session.get("amount_total")
        if amount_total is not None:
            paid = Decimal(amount_total) / 100
            if paid != job.amount_charged:
                logger.warning(
                    f"Job {job.job_id}: Stripe amount ${paid} differs from charged ${job.amount_charged}"
                )

        customer_email = (
            (session.get("customer_details") or {}).get("email")
            or session.get("customer_email")
            or ""
        )
        if customer_email and not job.email:
            job = jobs.update_job(job.job_id, email=customer_email)

        if job.status != UpscaleJob.STATUS_AWAITING_PAYMENT:
            logger.info(f"Job {job.job_id} already past payment ({job.status}); replay ignored")
            return

        job, changed = jobs.transition(
            job.job_id, UpscaleJob.STATUS_PENDING, paid_at=timezone.now()
        )
        if changed:
            logger.info(f"Payment completed for job {job.job_id}")
            emit_payment_completed(job.job_id)

    def _on_payment_succeeded(self, intent):
        job = self._resolve_job(intent.get("metadata"), payment_intent_id=intent.get("id"))
        if job is None:
            return
        if job.payment_status in (UpscaleJob.PAYMENT_PAID, UpscaleJob.PAYMENT_REFUNDED):
            return

        fields = {}
        if intent.get("id") and not job.payment_intent_id:
            fields["payment_intent_id"] = intent["id"]
        jobs.update_payment_status(job.job_id, UpscaleJob.PAYMENT_PAID, **fields)

    def _on_payment_failed(self, intent):
        job = self._resolve_job(intent.get("metadata"), payment_intent_id=intent.get("id"))
        if job is None:
            return
        if job.payment_status != UpscaleJob.PAYMENT_PENDING:
            return

        error = (intent.get("last_payment_error") or {}).get("message", "unknown")
        logger.info(f"Payment failed for job {job.job_id}: {error}")
        jobs.update_payment_status(job.job_id, UpscaleJob.PAYMENT_FAILED)

    def _on_charge_refunded(self, charge):
        payment_intent_id = charge.get("payment_intent") or ""
        job = self._resolve_job(charge.get("metadata"), payment_intent_id=payment_intent_id)
        if job is None:
            logger.warning(f"charge.refunded for unknown payment intent {payment_intent_id}")
            return

        amount = Decimal(charge.get("amount_refunded") or 0) / 100
        reason = "Refunded via payment provider"
        try:
            jobs.mark_refunded(job.job_id, amount, reason)
        except InvalidTransition:
            # The job never failed (e.g. a manual refund of a delivered job):
            # record the money movement without touching the lifecycle.
            jobs.update_payment_status(
                job.job_id,
                UpscaleJob.PAYMENT_REFUNDED,
                refund_amount=amount,
                refund_reason=reason,
                refunded_at=timezone.now(),
            )

    def _on_checkout_expired(self, session):
        job = self._resolve_job(session.get("metadata"), session_id=session.get("id"))
        if job is None or job.status != UpscaleJob.STATUS_AWAITING_PAYMENT:
            return
        jobs.update_status(job.job_id, UpscaleJob.STATUS_ABANDONED)

    # --- Refunds -------------------------------------------------------------

    def refund(self, job: UpscaleJob, reason: str, idempotency_key: Optional[str] = None) -> RefundResult:
        if not job.payment_intent_id:
            raise RefundError(f"Job {job.job_id} has no payment intent")
        if not self.api_key:
            raise RefundError("Stripe secret key not configured")

        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=job.payment_intent_id,
                reason="requested_by_customer",
                metadata={"job_id": job.job_id, "reason": reason[:500], "source": self.source},
                idempotency_key=idempotency_key or f"hires-refund-{job.job_id}",
            )
        except stripe.StripeError as exc:
            raise RefundError(f"Stripe refund failed for job {job.job_id}: {exc}")

        if refund.status in ("failed", "canceled"):
            raise RefundError(f"Stripe refund {refund.id} for job {job.job_id} is {refund.status}")

        return RefundResult(
            refund_id=refund.id,
            amount=Decimal(refund.amount) / 100,
            status=refund.status,
        )


def handle_stripe_webhook(request, payload):
    service = PaymentService()
    event = service.construct_event(payload, request.META.get("HTTP_STRIPE_SIGNATURE", ""))
    service.handle_event(event)
    return webhook_ack()
