"""
Pricing calculations and rate management.

Text generation is priced per 1K tokens from the active provider's
configuration. Image generation is priced per input and output image from a
prioritized table of model-name fragments.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple

from .token_counter import TokenUsage

COST_PRECISION = Decimal("0.00000001")  # request_logs stores decimal(16, 8)


@dataclass(frozen=True)
class ImagePricing:
    """Per-image pricing for one image model tier."""
    cost_per_input_image: float
    cost_per_output_image: float

    def __post_init__(self):
        """Validate prices are not negative."""
        if self.cost_per_input_image < 0:
            raise ValueError("cost_per_input_image must be >= 0")
        if self.cost_per_output_image < 0:
            raise ValueError("cost_per_output_image must be >= 0")


@dataclass(frozen=True)
class ImagePricingRule:
    """A model-name fragment and the pricing it selects."""
    pattern: str
    pricing: ImagePricing

    def matches(self, model: str) -> bool:
        return self.pattern in model


@dataclass(frozen=True)
class ImagePricingTable:
    """Prioritized image pricing rules with a terminal default.

    Rules are evaluated top to bottom; the first whose pattern is a substring
    of the model name wins. Unmatched models get ``default`` so they are still
    billed for output.
    """
    rules: Tuple[ImagePricingRule, ...]
    default: ImagePricing

    def get_pricing(self, model: str) -> ImagePricing:
        """Get pricing for a specific image model.
        
        Args:
            model: Model identifier, e.g. "black-forest-labs/flux-2-pro"
            
        Returns:
            ImagePricing of the first matching rule, else the default tier
        """
        for rule in self.rules:
            if rule.matches(model or ""):
                return rule.pricing
        return self.default

    @classmethod
    def from_rules(
        cls,
        rules: Iterable[Tuple[str, ImagePricing]],
        default: Optional[ImagePricing] = None,
    ) -> "ImagePricingTable":
        """Build a table from ``(pattern, pricing)`` pairs."""
        return cls(
            rules=tuple(ImagePricingRule(pattern, pricing) for pattern, pricing in rules),
            default=default or DEFAULT_IMAGE_PRICING,
        )


DEFAULT_IMAGE_PRICING = ImagePricing(cost_per_input_image=0.0, cost_per_output_image=0.025)

# Replicate list prices; configuration can override any tier
IMAGE_PRICING_TABLE = ImagePricingTable.from_rules([
    ("flux-2-pro", ImagePricing(cost_per_input_image=0.015, cost_per_output_image=0.015)),
    ("flux-2-max", ImagePricing(cost_per_input_image=0.015, cost_per_output_image=0.015)),
    ("flux-krea", ImagePricing(cost_per_input_image=0.0, cost_per_output_image=0.025)),
])


def _quantize(amount: Decimal) -> float:
    return float(amount.quantize(COST_PRECISION, rounding=ROUND_HALF_UP))


def calculate_text_cost(usage: TokenUsage, cost_per_1k_tokens: float) -> float:
    """Calculate the cost of one text generation call.
    
    Args:
        usage: Token usage of the call
        cost_per_1k_tokens: Price per 1K tokens of the active provider
        
    Returns:
        (prompt + completion) / 1000 * cost_per_1k_tokens, rounded to 8 places
    """
    tokens = Decimal(usage.billable_tokens)
    cost = (tokens / Decimal("1000")) * Decimal(str(cost_per_1k_tokens))
    return _quantize(cost)


def calculate_image_cost(pricing: ImagePricing, input_images_count: int, output_images_count: int) -> float:
    """Calculate the cost of one image generation call.
    
    Args:
        pricing: Pricing tier of the model used
        input_images_count: Reference images sent with the request
        output_images_count: Images produced
        
    Returns:
        input * cost_per_input_image + output * cost_per_output_image
    """
    if input_images_count < 0 or output_images_count < 0:
        raise ValueError("image counts must be >= 0")

    input_cost = Decimal(input_images_count) * Decimal(str(pricing.cost_per_input_image))
    output_cost = Decimal(output_images_count) * Decimal(str(pricing.cost_per_output_image))
    return _quantize(input_cost + output_cost)
