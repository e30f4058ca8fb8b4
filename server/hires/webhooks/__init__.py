from django.conf import settings

from .router import WebhookEndpoint, WebhookRouter, webhook_ack, webhook_error

__all__ = [
    "WebhookEndpoint",
    "WebhookRouter",
    "build_router",
    "webhook_ack",
    "webhook_error",
]


def build_router():
    """Build the router for every provider that calls back into this service."""
    from hires.services.payment import handle_stripe_webhook
    from hires.services.upscaling import handle_upsampler_webhook

    return WebhookRouter(
        [
            WebhookEndpoint("stripe", handle_stripe_webhook),
            WebhookEndpoint(
                "upsampler",
                handle_upsampler_webhook,
                content_type="application/json",
            ),
        ],
        max_payload_bytes=settings.WEBHOOK_MAX_PAYLOAD_BYTES,
    )
