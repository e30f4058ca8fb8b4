from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone
from hires.models import UpscaleJob
from hires.services.downloads import DownloadService
import logging

logger = logging.getLogger(__name__)


@shared_task(name="hires.tasks.cleanup_expired_downloads")
def cleanup_expired_downloads():
    """
    Hourly task to delete processed files whose download link expired.
    Job records are kept; only the file, token and expiry are cleared.
    """
    return DownloadService().cleanup_expired()


@shared_task(name="hires.tasks.cleanup_failed_jobs")
def cleanup_failed_jobs(days=None):
    """
    Daily task to delete old failed jobs that were never paid for.
    Paid failures stay for manual follow-up.
    """
    days = days if days is not None else settings.FAILED_JOB_CLEANUP_DAYS
    cutoff_time = timezone.now() - timedelta(days=days)
    count, _ = UpscaleJob.objects.filter(
        status=UpscaleJob.STATUS_FAILED,
        created_at__lt=cutoff_time,
    ).exclude(
        payment_status__in=[UpscaleJob.PAYMENT_PAID, UpscaleJob.PAYMENT_REFUNDED],
    ).delete()

    logger.info(f"Cleaned up {count} failed jobs older than {days} days")
    return count


@shared_task(name="hires.tasks.cleanup_abandoned_jobs")
def cleanup_abandoned_jobs(hours=None):
    """
    Daily task to delete checkouts that were abandoned or never completed.
    """
    hours = hours if hours is not None else settings.ABANDONED_JOB_CLEANUP_HOURS
    cutoff_time = timezone.now() - timedelta(hours=hours)
    count, _ = UpscaleJob.objects.filter(
        status=UpscaleJob.STATUS_ABANDONED,
        created_at__lt=cutoff_time,
    ).delete()

    logger.info(f"Cleaned up {count} abandoned jobs older than {hours} hours")
    return count
