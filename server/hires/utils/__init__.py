from .exceptions import (
    exception_handler,
    format_error,
    HiresError,
    WebhookError,
)
from .pricing import CostCalculator, PriceQuote, PricingConfig
from .upsampler_client import UpsamplerClient

__all__ = [
    "CostCalculator",
    "PriceQuote",
    "PricingConfig",
    "UpsamplerClient",
    "exception_handler",
    "format_error",
    "HiresError",
    "WebhookError",
]
