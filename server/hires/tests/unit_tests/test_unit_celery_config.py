from django.test import SimpleTestCase
from celery import Celery

import config


class CeleryConfigTest(SimpleTestCase):
    def test_celery_app_is_exposed(self):
        self.assertTrue(hasattr(config, "celery_app"))
        self.assertIsInstance(config.celery_app, Celery)

    def test_beat_schedules_every_cleanup_task(self):
        tasks = {entry["task"] for entry in config.celery_app.conf.beat_schedule.values()}

        self.assertEqual(
            tasks,
            {
                "hires.tasks.cleanup_expired_downloads",
                "hires.tasks.cleanup_failed_jobs",
                "hires.tasks.cleanup_abandoned_jobs",
            },
        )
