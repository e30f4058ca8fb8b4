from django.apps import AppConfig
from django.conf import settings
from django.core.checks import Tags, Warning, register


class HiresConfig(AppConfig):
    name = "hires"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self) -> None:
        from hires import signals  # noqa: F401

        @register(Tags.security)
        def _check_provider_credentials(app_configs, **kwargs):
            """
            Warn when provider credentials are missing. Checkout and webhook
            endpoints refuse to work without them.
            """
            issues = []
            required = {
                "STRIPE_SECRET_KEY": "hires.W001",
                "STRIPE_WEBHOOK_SECRET": "hires.W002",
                "UPSAMPLER_API_KEY": "hires.W003",
            }
            for name, issue_id in required.items():
                if not getattr(settings, name, ""):
                    issues.append(
                        Warning(
                            f"{name} is not configured.",
                            hint=f"Set {name} in the environment or .env file.",
                            id=issue_id,
                        )
                    )
            if not getattr(settings, "UPSAMPLER_WEBHOOK_SECRET", ""):
                issues.append(
                    Warning(
                        "UPSAMPLER_WEBHOOK_SECRET is not configured; Upsampler callbacks are not authenticated.",
                        id="hires.W004",
                    )
                )
            return issues
