"""Django management command to submit a job to Upsampler without a confirmed payment.

Every use is written to the ``hires.audit`` log with the actor and reason.
"""

import getpass

from django.core.management.base import BaseCommand, CommandError

from hires.services.upscaling import AdminOverride, UpscalingService
from hires.utils.exceptions import HiresError


class Command(BaseCommand):
    help = "Force upscaling of a job, bypassing the payment check"

    def add_arguments(self, parser):
        parser.add_argument("job_id")
        parser.add_argument("--reason", required=True)
        parser.add_argument("--actor", default=None)

    def handle(self, *args, **options):
        actor = options["actor"] or getpass.getuser()
        try:
            override = AdminOverride(actor=actor, reason=options["reason"])
        except ValueError as exc:
            raise CommandError(str(exc))

        try:
            job = UpscalingService().start_upscaling(options["job_id"], override=override)
        except HiresError as exc:
            raise CommandError(str(exc))

        if job.status == "processing":
            self.stdout.write(
                self.style.SUCCESS(f"Job {job.job_id} submitted as {job.upscale_job_id}")
            )
        else:
            self.stdout.write(self.style.WARNING(f"Job {job.job_id} is {job.status}"))
