from django import forms
from django.contrib import admin, messages
from django.contrib.admin import helpers
from django.shortcuts import render

from hires.models import SourceImage, UpscaleJob
from hires.services.downloads import DownloadService
from hires.services.upscaling import AdminOverride, UpscalingService
from hires.utils.exceptions import HiresError


class ForceUpscaleForm(forms.Form):
    _selected_action = forms.CharField(widget=forms.MultipleHiddenInput)
    reason = forms.CharField(
        max_length=500,
        widget=forms.Textarea(attrs={"rows": 3, "cols": 60}),
        help_text="Recorded in the audit log with your username.",
    )


@admin.register(SourceImage)
class SourceImageAdmin(admin.ModelAdmin):
    """Admin for SourceImage model."""

    list_display = ["id", "title", "width", "height", "post_id", "active", "created_at"]
    list_filter = ["active", "created_at"]
    search_fields = ["title", "image_url"]
    readonly_fields = ["created_at"]

    fieldsets = (
        (None, {"fields": ("title", "active", "post_id")}),
        ("Image", {"fields": ("image_url", "image_file", "width", "height")}),
        ("Timestamps", {"fields": ("created_at",)}),
    )


@admin.register(UpscaleJob)
class UpscaleJobAdmin(admin.ModelAdmin):
    """Admin for UpscaleJob model."""

    list_display = [
        "job_id",
        "status",
        "payment_status",
        "resolution",
        "amount_charged",
        "email",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "resolution", "created_at"]
    search_fields = [
        "job_id",
        "email",
        "checkout_session_id",
        "payment_intent_id",
        "upscale_job_id",
    ]
    readonly_fields = [
        "job_id",
        "status",
        "payment_status",
        "amount_charged",
        "amount_cost",
        "credits_used",
        "checkout_session_id",
        "payment_intent_id",
        "upscale_job_id",
        "upscaled_url",
        "artifact_path",
        "download_token",
        "download_expires_at",
        "email_sent",
        "failure_reason",
        "refund_reason",
        "refund_amount",
        "refund_requested_at",
        "created_at",
        "updated_at",
        "paid_at",
        "processing_started_at",
        "completed_at",
        "failed_at",
        "refunded_at",
    ]
    date_hierarchy = "created_at"

    fieldsets = (
        (None, {"fields": ("job_id", "status", "payment_status", "resolution", "email")}),
        (
            "Source image",
            {
                "fields": (
                    "source_image",
                    "source_type",
                    "image_url",
                    "upload_file_path",
                    "image_width",
                    "image_height",
                    "post_id",
                )
            },
        ),
        ("Pricing", {"fields": ("amount_charged", "amount_cost", "credits_used")}),
        (
            "Providers",
            {"fields": ("checkout_session_id", "payment_intent_id", "upscale_job_id", "upscaled_url")},
        ),
        (
            "Delivery",
            {"fields": ("artifact_path", "download_token", "download_expires_at", "email_sent")},
        ),
        (
            "Failure & refund",
            {
                "fields": (
                    "failure_reason",
                    "refund_reason",
                    "refund_amount",
                    "refund_requested_at",
                )
            },
        ),
        (
            "Timestamps",
            {
                "fields": (
                    "created_at",
                    "updated_at",
                    "paid_at",
                    "processing_started_at",
                    "completed_at",
                    "failed_at",
                    "refunded_at",
                )
            },
        ),
    )

    actions = ["force_upscaling", "retry_delivery", "issue_refund", "revoke_download"]

    def _actor(self, request):
        user = getattr(request, "user", None)
        return getattr(user, "username", "") or "admin"

    def force_upscaling(self, request, queryset):
        """Submit selected jobs to Upsampler even if payment is unconfirmed."""
        if "apply" in request.POST:
            form = ForceUpscaleForm(request.POST)
            if form.is_valid():
                self._force_upscaling(request, queryset, form.cleaned_data["reason"])
                return None
        else:
            form = ForceUpscaleForm(
                initial={"_selected_action": request.POST.getlist(helpers.ACTION_CHECKBOX_NAME)}
            )

        context = {
            **self.admin_site.each_context(request),
            "title": "Force upscaling",
            "opts": self.model._meta,
            "queryset": queryset,
            "form": form,
            "action_checkbox_name": helpers.ACTION_CHECKBOX_NAME,
        }
        return render(request, "admin/hires/upscalejob/force_upscaling.html", context)

    def _force_upscaling(self, request, queryset, reason):
        service = UpscalingService()
        override = AdminOverride(actor=self._actor(request), reason=reason)
        submitted = 0
        for job in queryset:
            try:
                job = service.start_upscaling(job.job_id, override=override)
            except HiresError as exc:
                self.message_user(request, f"{job.job_id}: {exc}", level=messages.ERROR)
                continue
            if job.status == UpscaleJob.STATUS_PROCESSING:
                submitted += 1
        self.message_user(request, f"{submitted} jobs submitted for upscaling")

    force_upscaling.short_description = "Force upscaling (admin override)"

    def retry_delivery(self, request, queryset):
        """Store the upscaled image again for completed jobs without a file."""
        service = UpscalingService()
        delivered = 0
        for job in queryset.filter(status=UpscaleJob.STATUS_COMPLETED, artifact_path=""):
            try:
                service.retry_delivery(job.job_id)
            except HiresError as exc:
                self.message_user(request, f"{job.job_id}: {exc}", level=messages.ERROR)
                continue
            delivered += 1
        self.message_user(request, f"{delivered} jobs delivered")

    retry_delivery.short_description = "Retry delivery of upscaled image"

    def issue_refund(self, request, queryset):
        """Refund failed jobs that were paid for."""
        service = UpscalingService()
        refunded = 0
        for job in queryset.filter(status=UpscaleJob.STATUS_FAILED):
            reason = f"Manual refund by {self._actor(request)}"
            if service.compensate(job.job_id, force=True, reason=reason):
                refunded += 1
            else:
                self.message_user(
                    request, f"{job.job_id}: refund not issued, see logs", level=messages.WARNING
                )
        self.message_user(request, f"{refunded} jobs refunded")

    issue_refund.short_description = "Issue refund for failed paid jobs"

    def revoke_download(self, request, queryset):
        """Invalidate download links immediately."""
        downloads = DownloadService()
        count = 0
        for job in queryset.exclude(download_token__isnull=True):
            downloads.revoke(job.job_id)
            count += 1
        self.message_user(request, f"{count} download links revoked")

    revoke_download.short_description = "Revoke download links"
