# Cost Package
from tylo_lens.cost.model_pricing import DEFAULT_PRICING, ModelPrice, PricingTable, get_pricing, normalize_pricing
from tylo_lens.cost.estimator import compute_cost
from tylo_lens.cost.tokens import TokenEstimator, estimate_tokens

__all__ = [
    "DEFAULT_PRICING",
    "ModelPrice",
    "PricingTable",
    "TokenEstimator",
    "compute_cost",
    "estimate_tokens",
    "get_pricing",
    "normalize_pricing",
]
