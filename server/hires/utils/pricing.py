"""Price calculation for high-resolution purchases.

Prices derive from the number of output pixels: the provider bills credits per
megapixel of output, and the customer pays the provider cost plus a
percentage markup, never less than the payment provider's minimum charge.
All amounts are `Decimal` in USD.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from django.conf import settings

CENTS = Decimal("0.01")
ONE_MEGAPIXEL = Decimal(1_000_000)


@dataclass(frozen=True)
class PricingConfig:
    cost_per_credit: Decimal
    credits_per_megapixel: Decimal
    markup_pct: int
    minimum_price: Decimal
    multipliers: Dict[str, int]

    @classmethod
    def from_settings(cls) -> "PricingConfig":
        return cls(
            cost_per_credit=Decimal(str(settings.UPSAMPLER_COST_PER_CREDIT)),
            credits_per_megapixel=Decimal(str(settings.UPSAMPLER_CREDITS_PER_MEGAPIXEL)),
            markup_pct=int(settings.HIRES_MARKUP_PERCENTAGE),
            minimum_price=Decimal(str(settings.STRIPE_MINIMUM_PAYMENT)),
            multipliers=dict(settings.HIRES_RESOLUTION_MULTIPLIERS),
        )


@dataclass(frozen=True)
class PriceQuote:
    credits: int
    provider_cost: Decimal
    customer_price: Decimal
    markup_pct: int
    output_megapixels: Decimal
    output_width: int
    output_height: int

    @property
    def is_zero(self) -> bool:
        return self.customer_price <= 0

    @property
    def amount_cents(self) -> int:
        return int((self.customer_price * 100).to_integral_value(rounding=ROUND_HALF_UP))


class CostCalculator:
    """Pure price calculator bound to one `PricingConfig` snapshot."""

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or PricingConfig.from_settings()

    def multiplier(self, resolution: str) -> Optional[int]:
        return self.config.multipliers.get(resolution)

    def output_dimensions(self, width: int, height: int, resolution: str):
        factor = self.multiplier(resolution) or 0
        return width * factor, height * factor

    def price(self, width: int, height: int, resolution: str) -> PriceQuote:
        """
        Price an upscale of a `width` x `height` image.

        Unknown resolutions and non-positive dimensions produce an all-zero
        quote; callers treat a zero price as a pricing failure.
        """
        factor = self.multiplier(resolution)
        if not factor or width <= 0 or height <= 0:
            return self._zero_quote()

        output_width = width * factor
        output_height = height * factor
        output_megapixels = Decimal(output_width * output_height) / ONE_MEGAPIXEL

        credits = int(
            (output_megapixels * self.config.credits_per_megapixel).to_integral_value(
                rounding=ROUND_CEILING
            )
        )
        provider_cost = (Decimal(credits) * self.config.cost_per_credit).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
        customer_price = (
            provider_cost * (1 + Decimal(self.config.markup_pct) / 100)
        ).quantize(CENTS, rounding=ROUND_HALF_UP)
        customer_price = max(customer_price, self.config.minimum_price)

        return PriceQuote(
            credits=credits,
            provider_cost=provider_cost,
            customer_price=customer_price,
            markup_pct=self.config.markup_pct,
            output_megapixels=output_megapixels,
            output_width=output_width,
            output_height=output_height,
        )

    def quote_all(self, width: int, height: int) -> Dict[str, PriceQuote]:
        return {
            resolution: self.price(width, height, resolution)
            for resolution in self.config.multipliers
        }

    def _zero_quote(self) -> PriceQuote:
        return PriceQuote(
            credits=0,
            provider_cost=Decimal("0.00"),
            customer_price=Decimal("0.00"),
            markup_pct=self.config.markup_pct,
            output_megapixels=Decimal(0),
            output_width=0,
            output_height=0,
        )
