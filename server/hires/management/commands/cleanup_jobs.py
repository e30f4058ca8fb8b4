"""Django management command running the job maintenance sweeps once.

Useful where Celery beat is not deployed (e.g. from cron).
"""

from django.core.management.base import BaseCommand

from hires.tasks.cleanup import (
    cleanup_abandoned_jobs,
    cleanup_expired_downloads,
    cleanup_failed_jobs,
)


class Command(BaseCommand):
    """Delete expired downloads, stale failed jobs and abandoned checkouts."""

    help = "Run expired download, failed job and abandoned job cleanup"

    def add_arguments(self, parser):
        parser.add_argument("--failed-days", type=int, default=None)
        parser.add_argument("--abandoned-hours", type=int, default=None)

    def handle(self, *args, **options):
        downloads = cleanup_expired_downloads()
        self.stdout.write(self.style.SUCCESS(f"Expired downloads cleaned: {downloads}"))

        failed = cleanup_failed_jobs(days=options["failed_days"])
        self.stdout.write(self.style.SUCCESS(f"Failed jobs deleted: {failed}"))

        abandoned = cleanup_abandoned_jobs(hours=options["abandoned_hours"])
        self.stdout.write(self.style.SUCCESS(f"Abandoned jobs deleted: {abandoned}"))
