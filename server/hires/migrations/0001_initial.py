import django.db.models.deletion
from django.db import migrations, models

import hires.models.job


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SourceImage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(blank=True, max_length=255)),
                ("image_url", models.URLField(blank=True, help_text="Public URL of the original image", max_length=500)),
                (
                    "image_file",
                    models.ImageField(
                        blank=True,
                        height_field="height",
                        help_text="Locally stored original, used when no URL is given",
                        upload_to="sources/",
                        width_field="width",
                    ),
                ),
                ("width", models.PositiveIntegerField(default=0)),
                ("height", models.PositiveIntegerField(default=0)),
                (
                    "post_id",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Identifier of the content the image is published in"
                    ),
                ),
                (
                    "active",
                    models.BooleanField(default=True, help_text="Whether this image can currently be purchased"),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "source_images",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="UpscaleJob",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "job_id",
                    models.CharField(
                        default=hires.models.job._new_job_id,
                        editable=False,
                        help_text="Opaque public identifier",
                        max_length=36,
                        unique=True,
                    ),
                ),
                (
                    "source_type",
                    models.CharField(choices=[("url", "URL"), ("upload", "Upload")], default="url", max_length=10),
                ),
                ("image_url", models.URLField(blank=True, max_length=500)),
                ("upload_file_path", models.CharField(blank=True, max_length=500)),
                ("image_width", models.PositiveIntegerField(default=0)),
                ("image_height", models.PositiveIntegerField(default=0)),
                ("post_id", models.PositiveBigIntegerField(default=0)),
                ("resolution", models.CharField(choices=[("4x", "4x"), ("8x", "8x")], max_length=5)),
                ("email", models.EmailField(blank=True, max_length=254)),
                (
                    "amount_charged",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Customer price fixed at checkout creation (USD)",
                        max_digits=10,
                    ),
                ),
                (
                    "amount_cost",
                    models.DecimalField(
                        decimal_places=2, default=0, help_text="Estimated provider cost (USD)", max_digits=10
                    ),
                ),
                ("credits_used", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("awaiting_payment", "Awaiting payment"),
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("abandoned", "Abandoned"),
                            ("refunded", "Refunded"),
                        ],
                        default="awaiting_payment",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("checkout_session_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("payment_intent_id", models.CharField(blank=True, db_index=True, max_length=255)),
                (
                    "upscale_job_id",
                    models.CharField(
                        blank=True, db_index=True, help_text="Job ID returned by Upsampler", max_length=255
                    ),
                ),
                ("upscaled_url", models.URLField(blank=True, max_length=1000)),
                ("artifact_path", models.CharField(blank=True, max_length=500)),
                ("download_token", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("download_expires_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("email_sent", models.BooleanField(default=False)),
                ("failure_reason", models.TextField(blank=True)),
                ("refund_reason", models.TextField(blank=True)),
                ("refund_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                (
                    "refund_requested_at",
                    models.DateTimeField(
                        blank=True, help_text="Set once an automatic refund has been attempted", null=True
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "source_image",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="hires.sourceimage",
                    ),
                ),
            ],
            options={
                "db_table": "upscale_jobs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="upscale_job_status_idx"),
                    models.Index(fields=["payment_status"], name="upscale_job_payment_idx"),
                ],
            },
        ),
    ]
