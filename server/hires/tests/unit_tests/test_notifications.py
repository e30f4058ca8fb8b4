from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.core import mail
from django.test import TestCase, override_settings
from django.utils import timezone

from hires import notifications
from hires.models import UpscaleJob
from hires.services import jobs


@override_settings(SITE_URL="https://api.example.com", HIRES_ADMIN_EMAIL="owner@example.com")
class NotificationTest(TestCase):
    def setUp(self):
        self.job = jobs.create_job(
            {
                "image_url": "https://example.com/photo.jpg",
                "image_width": 1000,
                "image_height": 1000,
                "resolution": "8x",
                "email": "buyer@example.com",
                "amount_charged": Decimal("3.84"),
            }
        )
        self.job = jobs.update_job(
            self.job.job_id,
            download_token="d" * 64,
            download_expires_at=timezone.now() + timedelta(hours=24),
        )

    def test_download_notification_goes_to_customer_and_owner(self):
        self.assertTrue(notifications.send_download_notification(self.job))

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["buyer@example.com", "owner@example.com"])
        self.assertIn(f"https://api.example.com/api/download/{'d' * 64}/", message.body)
        self.assertEqual(message.alternatives[0][1], "text/html")
        self.job.refresh_from_db()
        self.assertTrue(self.job.email_sent)

    @override_settings(HIRES_ADMIN_EMAIL="")
    def test_no_recipient_sends_nothing(self):
        UpscaleJob.objects.filter(pk=self.job.pk).update(email="")
        self.job.refresh_from_db()

        self.assertFalse(notifications.send_download_notification(self.job))
        self.assertEqual(len(mail.outbox), 0)

    @patch("hires.notifications.send_mail", side_effect=ConnectionRefusedError("smtp down"))
    def test_mail_failure_is_logged_not_raised(self, _mock_send):
        with self.assertLogs("hires.notifications", level="ERROR"):
            sent = notifications.send_download_notification(self.job)

        self.assertFalse(sent)
        self.job.refresh_from_db()
        self.assertFalse(self.job.email_sent)

    def test_refund_notification_mentions_amount(self):
        UpscaleJob.objects.filter(pk=self.job.pk).update(refund_amount=Decimal("3.84"))
        self.job.refresh_from_db()

        self.assertTrue(notifications.send_refund_notification(self.job))

        self.assertIn("3.84", mail.outbox[0].body)
