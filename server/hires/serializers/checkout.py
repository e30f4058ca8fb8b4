"""DRF serializers for pricing, checkout and job status."""

from django.conf import settings
from rest_framework import serializers

from hires.models import UpscaleJob
from hires.notifications import download_url


class QuoteRequestSerializer(serializers.Serializer):
    """Serializer for price quote requests"""

    image_id = serializers.IntegerField(min_value=1)


class CheckoutRequestSerializer(serializers.Serializer):
    """Serializer for checkout requests"""

    image_id = serializers.IntegerField(min_value=1)
    resolution = serializers.ChoiceField(choices=[])
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    post_id = serializers.IntegerField(required=False, min_value=0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["resolution"].choices = list(settings.HIRES_RESOLUTION_MULTIPLIERS)


class JobStatusSerializer(serializers.ModelSerializer):
    """Public view of a job; never exposes failure or refund details"""

    download_url = serializers.SerializerMethodField()

    class Meta:
        model = UpscaleJob
        fields = [
            'job_id',
            'status',
            'payment_status',
            'resolution',
            'created_at',
            'download_url',
            'download_expires_at',
        ]
        read_only_fields = fields

    def get_download_url(self, obj):
        if obj.status != UpscaleJob.STATUS_COMPLETED or not obj.download_token:
            return None
        if obj.is_download_expired:
            return None
        return download_url(obj)
