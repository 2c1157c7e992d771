import logging
from typing import Dict, Optional

from policywatch.config import settings

logger = logging.getLogger(__name__)


def _lookup(model: str, pricing: Dict[str, Dict[str, float]]) -> Optional[Dict[str, float]]:
    if model in pricing:
        return pricing[model]
    # "openai/gpt-4o" style ids from routers fall back to the bare model name
    bare = model.split("/", 1)[-1]
    if bare in pricing:
        return pricing[bare]
    for key, value in pricing.items():
        if key.split("/", 1)[-1] == bare:
            return value
    return None


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    pricing: Optional[Dict[str, Dict[str, float]]] = None,
) -> float:
    """USD cost for a token count, using per-million-token prices."""
    table = settings.LLM_PRICING if pricing is None else pricing
    model_pricing = _lookup(model or "", table)
    if not model_pricing:
        logger.warning(f"No pricing found for model '{model}', using $0")
        return 0.0

    cost = (input_tokens / 1_000_000) * model_pricing.get("input", 0.0) + (
        output_tokens / 1_000_000
    ) * model_pricing.get("output", 0.0)
    return round(cost, 6)


class UsageTracker:
    """Single accumulator for every model call made during one analysis run."""

    def __init__(self):
        self.input_tokens = 0
        self.output_tokens = 0
        self.calls = 0
        self.model: Optional[str] = None

    def record(self, response) -> None:
        self.input_tokens += response.input_tokens or 0
        self.output_tokens += response.output_tokens or 0
        self.calls += 1
        if response.model:
            self.model = response.model

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def cost(self, model: Optional[str] = None, pricing: Optional[Dict[str, Dict[str, float]]] = None) -> float:
        return calculate_cost(model or self.model or "", self.input_tokens, self.output_tokens, pricing)
