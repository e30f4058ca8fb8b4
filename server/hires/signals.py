"""Workflow signals.

`job_status_changed` fires after every accepted status change.
`payment_completed` fires once per job when a confirmed payment moves it out
of `awaiting_payment`; the upscaling orchestrator listens for it.
"""

import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent with job_id, old_status, new_status, extra_fields.
job_status_changed = Signal()

# Sent with job_id.
payment_completed = Signal()


def emit_payment_completed(job_id):
    """Send `payment_completed`, logging receivers that raise."""
    results = payment_completed.send_robust(sender=None, job_id=job_id)
    for handler, result in results:
        if isinstance(result, Exception):
            logger.error(
                f"payment_completed handler {getattr(handler, '__name__', handler)} "
                f"failed for job {job_id}: {result}",
                exc_info=result,
            )


@receiver(job_status_changed)
def log_status_change(sender, job_id, old_status, new_status, **kwargs):
    logger.info(f"Job {job_id} status changed: {old_status} -> {new_status}")


@receiver(payment_completed)
def start_upscaling_on_payment(sender, job_id, **kwargs):
    from hires.services.upscaling import UpscalingService

    UpscalingService().handle_payment_completed(job_id)
