"""
Model Pricing Table

Price entries used for cost computation.
Prices are per 1K tokens, in the entry's currency (USD by default).

DESIGN RULES:
- Configuration only, no logic beyond lookup
- Exact model id match only: a missing entry means "no price", never a guess
- Users pass their own table to TyloLens(pricing=...)
"""

from typing import Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ModelPrice(BaseModel):
    """Price entry for one model id."""
    model_config = ConfigDict(populate_by_name=True)

    currency: str = "USD"
    price_per_1k_input: float = Field(alias="pricePer1KInput")
    price_per_1k_output: float = Field(alias="pricePer1KOutput")


PricingTable = Dict[str, ModelPrice]
PricingTableInput = Mapping[str, Union[ModelPrice, Mapping[str, object]]]


# OpenAI list prices (USD per 1K tokens). Opt-in: pass DEFAULT_PRICING
# explicitly, the engine ships with no table.
DEFAULT_PRICING: PricingTable = {
    "gpt-4o-mini": ModelPrice(price_per_1k_input=0.00015, price_per_1k_output=0.0006),
    "gpt-4o": ModelPrice(price_per_1k_input=0.0025, price_per_1k_output=0.01),
    "gpt-4-turbo": ModelPrice(price_per_1k_input=0.01, price_per_1k_output=0.03),
    "gpt-3.5-turbo": ModelPrice(price_per_1k_input=0.0005, price_per_1k_output=0.0015),
}


def normalize_pricing(table: Optional[PricingTableInput]) -> PricingTable:
    """Validate a user-supplied table (dicts with camelCase or snake_case keys)."""
    if not table:
        return {}
    return {
        model: entry if isinstance(entry, ModelPrice) else ModelPrice.model_validate(entry)
        for model, entry in table.items()
    }


def get_pricing(model: Optional[str], table: Optional[PricingTable]) -> Optional[ModelPrice]:
    """
    Get pricing for a model.

    Args:
        model: Model id exactly as passed to wrap_llm (e.g. 'openai:gpt-4o')
        table: Pricing table

    Returns:
        The entry, or None when the model has no price
    """
    if not model or not table:
        return None
    return table.get(model)
