"""Customer and operator emails.

Sending never raises into the caller: a mail failure must not undo a
delivery or a refund that already happened.
"""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.template.loader import render_to_string

from hires.models import UpscaleJob

logger = logging.getLogger(__name__)


def download_url(job: UpscaleJob) -> str:
    return f"{settings.SITE_URL}/api/download/{job.download_token}/"


def _recipients(job: UpscaleJob):
    recipients = []
    if job.email:
        recipients.append(job.email)
    admin_email = settings.HIRES_ADMIN_EMAIL
    if admin_email and admin_email not in recipients:
        recipients.append(admin_email)
    return recipients


def _send(subject, template, job, context, recipients):
    try:
        body = render_to_string(f"hires/email/{template}.txt", context)
        html_body = render_to_string(f"hires/email/{template}.html", context)
        send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            recipients,
            html_message=html_body,
        )
    except Exception:
        logger.exception(f"Failed to send {template} email for job {job.job_id}")
        return False
    return True


def send_download_notification(job: UpscaleJob) -> bool:
    recipients = _recipients(job)
    if not recipients:
        logger.info(f"Job {job.job_id}: no recipient for download notification")
        return False

    context = {
        "job": job,
        "download_url": download_url(job),
        "expires_at": job.download_expires_at,
        "expiry_hours": settings.DOWNLOAD_EXPIRY_HOURS,
    }
    sent = _send("Your high-resolution image is ready", "download_ready", job, context, recipients)
    if sent:
        UpscaleJob.objects.filter(pk=job.pk).update(email_sent=True)
        job.email_sent = True
    return sent


def send_refund_notification(job: UpscaleJob) -> bool:
    recipients = _recipients(job)
    if not recipients:
        return False

    context = {"job": job, "amount": job.refund_amount or job.amount_charged}
    return _send("Your image order has been refunded", "refund_issued", job, context, recipients)
