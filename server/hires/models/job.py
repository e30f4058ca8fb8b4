"""Upscale job database model.

An `UpscaleJob` records one purchase of a high-resolution image from checkout
through payment, provider processing and delivery. The allowed lifecycle is
encoded in `TRANSITIONS` and `PAYMENT_TRANSITIONS`; writes go through
`hires.services.jobs` which enforces them.
"""

import uuid

from django.db import models
from django.utils import timezone


def _new_job_id():
    return str(uuid.uuid4())


class UpscaleJob(models.Model):
    """Paid upscaling job tracking"""

    STATUS_AWAITING_PAYMENT = "awaiting_payment"
    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_ABANDONED = "abandoned"
    STATUS_REFUNDED = "refunded"

    STATUS_CHOICES = [
        (STATUS_AWAITING_PAYMENT, 'Awaiting payment'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_ABANDONED, 'Abandoned'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    PAYMENT_PENDING = "pending"
    PAYMENT_PAID = "paid"
    PAYMENT_FAILED = "failed"
    PAYMENT_REFUNDED = "refunded"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_PAID, 'Paid'),
        (PAYMENT_FAILED, 'Failed'),
        (PAYMENT_REFUNDED, 'Refunded'),
    ]

    RESOLUTION_CHOICES = [
        ('4x', '4x'),
        ('8x', '8x'),
    ]

    SOURCE_TYPE_CHOICES = [
        ('url', 'URL'),
        ('upload', 'Upload'),
    ]

    TRANSITIONS = {
        STATUS_AWAITING_PAYMENT: {
            STATUS_PENDING,
            STATUS_PROCESSING,
            STATUS_FAILED,
            STATUS_ABANDONED,
        },
        STATUS_PENDING: {STATUS_PROCESSING, STATUS_FAILED},
        STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED},
        STATUS_COMPLETED: set(),
        STATUS_FAILED: {STATUS_REFUNDED},
        STATUS_ABANDONED: set(),
        STATUS_REFUNDED: set(),
    }

    PAYMENT_TRANSITIONS = {
        PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
        PAYMENT_FAILED: {PAYMENT_PAID},
        PAYMENT_PAID: {PAYMENT_REFUNDED},
        PAYMENT_REFUNDED: set(),
    }

    job_id = models.CharField(
        max_length=36,
        unique=True,
        default=_new_job_id,
        editable=False,
        help_text="Opaque public identifier"
    )
    source_image = models.ForeignKey(
        "hires.SourceImage",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs"
    )
    source_type = models.CharField(
        max_length=10,
        choices=SOURCE_TYPE_CHOICES,
        default='url'
    )
    image_url = models.URLField(max_length=500, blank=True)
    upload_file_path = models.CharField(max_length=500, blank=True)
    image_width = models.PositiveIntegerField(default=0)
    image_height = models.PositiveIntegerField(default=0)
    post_id = models.PositiveBigIntegerField(default=0)

    resolution = models.CharField(max_length=5, choices=RESOLUTION_CHOICES)
    email = models.EmailField(blank=True)
    amount_charged = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=0,
        help_text="Customer price fixed at checkout creation (USD)"
    )
    amount_cost = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=0,
        help_text="Estimated provider cost (USD)"
    )
    credits_used = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=0
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_AWAITING_PAYMENT
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default=PAYMENT_PENDING
    )

    checkout_session_id = models.CharField(max_length=255, blank=True, db_index=True)
    payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    upscale_job_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Job ID returned by Upsampler"
    )

    upscaled_url = models.URLField(max_length=1000, blank=True)
    artifact_path = models.CharField(max_length=500, blank=True)
    download_token = models.CharField(max_length=64, unique=True, null=True, blank=True)
    download_expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    email_sent = models.BooleanField(default=False)

    failure_reason = models.TextField(blank=True)
    refund_reason = models.TextField(blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    refund_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set once an automatic refund has been attempted"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'upscale_jobs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='upscale_job_status_idx'),
            models.Index(fields=['payment_status'], name='upscale_job_payment_idx'),
        ]

    def __str__(self):
        return f"Job {self.job_id} - {self.status} ({self.resolution})"

    @classmethod
    def can_transition(cls, old_status, new_status):
        if old_status == new_status:
            return True
        return new_status in cls.TRANSITIONS.get(old_status, set())

    @classmethod
    def can_transition_payment(cls, old_status, new_status):
        if old_status == new_status:
            return True
        return new_status in cls.PAYMENT_TRANSITIONS.get(old_status, set())

    @property
    def is_paid(self):
        return self.payment_status == self.PAYMENT_PAID

    @property
    def is_download_expired(self):
        return bool(self.download_expires_at and self.download_expires_at <= timezone.now())

    @property
    def has_artifact(self):
        return bool(self.artifact_path)
