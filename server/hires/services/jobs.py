"""Job store.

Every write to an `UpscaleJob` goes through this module so the lifecycle
rules hold regardless of which webhook or operator action triggered it.
Status writes lock the row with ``select_for_update`` and apply the same
transition check on the locked copy.
"""

import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import EmailValidator, URLValidator
from django.db import transaction
from django.utils import timezone

from hires.models import UpscaleJob
from hires.signals import job_status_changed
from hires.utils.exceptions import InvalidTransition, JobNotFound, JobValidationError

logger = logging.getLogger(__name__)

# Fields that only the dedicated functions below may write.
PROTECTED_FIELDS = {"id", "job_id", "status", "payment_status", "created_at"}

CREATE_FIELDS = {
    "source_image",
    "source_type",
    "image_url",
    "upload_file_path",
    "image_width",
    "image_height",
    "post_id",
    "resolution",
    "email",
    "amount_charged",
    "amount_cost",
    "credits_used",
}


def _validate_job_data(job_data):
    errors = {}
    source_type = job_data.get("source_type") or "url"
    image_url = (job_data.get("image_url") or "").strip()
    upload_path = (job_data.get("upload_file_path") or "").strip()

    if source_type not in dict(UpscaleJob.SOURCE_TYPE_CHOICES):
        errors["source_type"] = "Invalid source type"

    if not image_url and not upload_path:
        errors["image_url"] = "An image URL or upload path is required"
    elif image_url and source_type != "upload":
        try:
            URLValidator(schemes=["http", "https"])(image_url)
        except ValidationError:
            errors["image_url"] = "Invalid image URL"

    if job_data.get("resolution") not in settings.HIRES_RESOLUTION_MULTIPLIERS:
        errors["resolution"] = "Invalid resolution"

    post_id = job_data.get("post_id", 0)
    if isinstance(post_id, bool) or not isinstance(post_id, int) or post_id < 0:
        errors["post_id"] = "Post id must be a non-negative integer"

    email = (job_data.get("email") or "").strip()
    if email:
        try:
            EmailValidator()(email)
        except ValidationError:
            errors["email"] = "Invalid email address"

    if errors:
        raise JobValidationError("Invalid job data", details=errors)


def create_job(job_data):
    """
    Validate `job_data` and insert a new job in `awaiting_payment`.

    Unknown keys are ignored. Status fields are always initialised here and
    cannot be supplied by callers.
    """
    _validate_job_data(job_data)

    fields = {key: value for key, value in job_data.items() if key in CREATE_FIELDS}
    fields["email"] = (fields.get("email") or "").strip()
    job = UpscaleJob.objects.create(
        status=UpscaleJob.STATUS_AWAITING_PAYMENT,
        payment_status=UpscaleJob.PAYMENT_PENDING,
        **fields,
    )
    logger.info(f"Created job {job.job_id} ({job.resolution}, ${job.amount_charged})")
    return job


def _get(**lookup):
    try:
        return UpscaleJob.objects.get(**lookup)
    except UpscaleJob.DoesNotExist:
        raise JobNotFound(f"No job matching {lookup}")


def get_job(job_id):
    return _get(job_id=job_id)


def get_job_by_token(token):
    if not token:
        raise JobNotFound("Empty token")
    return _get(download_token=token)


def get_job_by_checkout_session(session_id):
    if not session_id:
        raise JobNotFound("Empty checkout session id")
    return _get(checkout_session_id=session_id)


def get_job_by_upscale_id(upscale_job_id):
    if not upscale_job_id:
        raise JobNotFound("Empty upscale job id")
    return _get(upscale_job_id=str(upscale_job_id).lower())


def get_job_by_payment_intent(payment_intent_id):
    if not payment_intent_id:
        raise JobNotFound("Empty payment intent id")
    job = UpscaleJob.objects.filter(payment_intent_id=payment_intent_id).first()
    if job is None:
        raise JobNotFound(f"No job for payment intent {payment_intent_id}")
    return job


def _lock(job_id):
    try:
        return UpscaleJob.objects.select_for_update().get(job_id=job_id)
    except UpscaleJob.DoesNotExist:
        raise JobNotFound(f"No job matching job_id={job_id}")


def _apply_fields(job, fields):
    for name, value in fields.items():
        if name in PROTECTED_FIELDS:
            raise JobValidationError(f"Field {name} cannot be set directly")
        if not hasattr(job, name):
            raise JobValidationError(f"Unknown job field {name}")
        setattr(job, name, value)


def transition(job_id, new_status, **extra_fields):
    """
    Move a job to `new_status` and write `extra_fields` in the same update.

    Returns ``(job, changed)`` where `changed` is False for a same-status
    call. Raises `InvalidTransition` when the move is not in the lifecycle
    table. Entering `refunded` is reserved for `mark_refunded`.
    """
    if new_status not in UpscaleJob.TRANSITIONS:
        raise JobValidationError(f"Unknown status {new_status}")

    with transaction.atomic():
        job = _lock(job_id)
        old_status = job.status

        if new_status == UpscaleJob.STATUS_REFUNDED and old_status != new_status:
            raise InvalidTransition(job_id, old_status, new_status)
        if not UpscaleJob.can_transition(old_status, new_status):
            raise InvalidTransition(job_id, old_status, new_status)

        _apply_fields(job, extra_fields)
        job.status = new_status
        job.save()

    changed = old_status != new_status
    if changed:
        job_status_changed.send(
            sender=UpscaleJob,
            job_id=job.job_id,
            old_status=old_status,
            new_status=new_status,
            extra_fields=extra_fields,
        )
    return job, changed


def update_status(job_id, new_status, **extra_fields):
    job, _changed = transition(job_id, new_status, **extra_fields)
    return job


def update_payment_status(job_id, payment_status, **payment_fields):
    """
    Set the payment status, following `UpscaleJob.PAYMENT_TRANSITIONS`.

    A paid or refunded payment never moves back; such calls raise
    `InvalidTransition` with ``field="payment_status"``.
    """
    if payment_status not in UpscaleJob.PAYMENT_TRANSITIONS:
        raise JobValidationError(f"Unknown payment status {payment_status}")

    with transaction.atomic():
        job = _lock(job_id)
        old = job.payment_status
        if not UpscaleJob.can_transition_payment(old, payment_status):
            raise InvalidTransition(job_id, old, payment_status, field="payment_status")

        _apply_fields(job, payment_fields)
        job.payment_status = payment_status
        job.save()

    if old != payment_status:
        logger.info(f"Job {job_id} payment status changed: {old} -> {payment_status}")
    return job


def update_job(job_id, **fields):
    """Write non-status fields under the row lock."""
    with transaction.atomic():
        job = _lock(job_id)
        _apply_fields(job, fields)
        job.save()
    return job


def claim_refund(job_id, force=False):
    """
    Reserve the right to refund a failed, paid job.

    Returns the locked-and-updated job, or None when the job is not
    refundable or a refund was already requested. `force` skips the
    already-requested check for operator retries.
    """
    with transaction.atomic():
        job = _lock(job_id)
        if job.status != UpscaleJob.STATUS_FAILED:
            return None
        if job.payment_status != UpscaleJob.PAYMENT_PAID or not job.payment_intent_id:
            return None
        if job.refund_requested_at and not force:
            return None
        job.refund_requested_at = timezone.now()
        job.save(update_fields=["refund_requested_at", "updated_at"])
    return job


def mark_refunded(job_id, amount, reason):
    """
    Record a completed refund and move a failed job to `refunded`.

    Calling it again for a job that is already refunded is a no-op.
    """
    with transaction.atomic():
        job = _lock(job_id)
        old_status = job.status

        if old_status == UpscaleJob.STATUS_REFUNDED:
            return job
        if not UpscaleJob.can_transition(old_status, UpscaleJob.STATUS_REFUNDED):
            raise InvalidTransition(job_id, old_status, UpscaleJob.STATUS_REFUNDED)

        job.status = UpscaleJob.STATUS_REFUNDED
        job.payment_status = UpscaleJob.PAYMENT_REFUNDED
        job.refund_amount = Decimal(str(amount)) if amount is not None else job.amount_charged
        job.refund_reason = reason or ""
        job.refunded_at = timezone.now()
        job.save()

    job_status_changed.send(
        sender=UpscaleJob,
        job_id=job.job_id,
        old_status=old_status,
        new_status=UpscaleJob.STATUS_REFUNDED,
        extra_fields={"refund_amount": job.refund_amount, "refund_reason": job.refund_reason},
    )
    logger.info(f"Job {job_id} refunded: ${job.refund_amount} ({job.refund_reason})")
    return job


def delete_job(job_id):
    deleted, _ = UpscaleJob.objects.filter(job_id=job_id).delete()
    if not deleted:
        raise JobNotFound(f"No job matching job_id={job_id}")
    logger.info(f"Deleted job {job_id}")
