"""Shared model pricing utilities."""

from .normalizer import Provider, normalize_claude_model, normalize_codex_model, normalize_model
from .price_spec import MODEL_PRICING, ModelPricing, PricingTier, calculate_cost, get_model_pricing

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "PricingTier",
    "Provider",
    "calculate_cost",
    "get_model_pricing",
    "normalize_claude_model",
    "normalize_codex_model",
    "normalize_model",
]
