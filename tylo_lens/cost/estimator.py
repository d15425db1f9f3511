"""
Cost Estimator

Computes a per-span cost breakdown from normalized usage.

DESIGN RULES:
- Pure function, no side effects
- Unknown model -> all-zero cost, never an exception
"""

from typing import Optional

from tylo_lens.cost.model_pricing import PricingTable, get_pricing
from tylo_lens.schemas.trace import Cost, Usage


def compute_cost(
    model: Optional[str],
    usage: Usage,
    table: Optional[PricingTable] = None,
    currency: str = "USD",
) -> Cost:
    """
    Compute the cost of a call.

    Args:
        model: Model id used as the pricing key
        usage: Normalized token usage
        table: Pricing table (see cost.model_pricing)
        currency: Currency reported when no entry exists

    Returns:
        Cost with input/output/total breakdown and the unit prices applied
    """
    pricing = get_pricing(model, table)
    if pricing is None:
        return Cost(currency=currency, total=0.0, input=0.0, output=0.0)

    input_cost = (usage.input_tokens / 1000) * pricing.price_per_1k_input
    output_cost = (usage.output_tokens / 1000) * pricing.price_per_1k_output

    return Cost(
        currency=pricing.currency,
        input=input_cost,
        output=output_cost,
        total=input_cost + output_cost,
        price_per_1k_input=pricing.price_per_1k_input,
        price_per_1k_output=pricing.price_per_1k_output,
    )
