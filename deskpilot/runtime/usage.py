from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from .llm.types import TokenUsage
from .models.messages import UsageReport

logger = logging.getLogger(__name__)


class ModelPricing(BaseModel):
    """Per-token prices (USD). Cached input falls back to the input price when no cache price is set."""

    model_config = ConfigDict(populate_by_name=True)

    input_cost_per_token: float = Field(default=0.0, ge=0.0, alias="inputCostPerToken")
    output_cost_per_token: float = Field(default=0.0, ge=0.0, alias="outputCostPerToken")
    cache_read_input_token_cost: float | None = Field(default=None, ge=0.0, alias="cacheReadInputTokenCost")

    def cost(self, usage: TokenUsage) -> float:
        sent = max(0, usage.input_tokens - usage.cached_input_tokens)
        cache_price = self.cache_read_input_token_cost
        if cache_price is None:
            cache_price = self.input_cost_per_token
        return (
            sent * self.input_cost_per_token
            + usage.output_tokens * self.output_cost_per_token
            + usage.cached_input_tokens * cache_price
        )


class PricingProvider(Protocol):
    def pricing_for(self, provider_name: str, model: str) -> ModelPricing | None: ...


class StaticPricingProvider:
    """Prices keyed by `provider/model`, falling back to the bare model id."""

    def __init__(self, prices: dict[str, ModelPricing] | None = None) -> None:
        self._prices = dict(prices or {})

    def pricing_for(self, provider_name: str, model: str) -> ModelPricing | None:
        return self._prices.get(f"{provider_name}/{model}") or self._prices.get(model)


@dataclass(slots=True)
class RunUsage:
    sent_tokens: int = 0
    received_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    cost: float = 0.0
    steps: int = 0

    def add(self, report: UsageReport) -> None:
        self.sent_tokens += report.sent_tokens
        self.received_tokens += report.received_tokens
        self.cache_read_tokens += report.cache_read_tokens
        self.cache_write_tokens += report.cache_write_tokens
        self.cost += report.message_cost
        self.steps += 1


class UsageAggregator:
    def __init__(self, *, provider_name: str, model: str, pricing: PricingProvider | None = None) -> None:
        self._provider_name = provider_name
        self._model = model
        self._pricing = pricing
        self.total = RunUsage()

    def report(self, usage: TokenUsage | None, *, agent_total_cost: float) -> UsageReport:
        usage = usage or TokenUsage()
        pricing = self._pricing.pricing_for(self._provider_name, self._model) if self._pricing is not None else None
        if pricing is None:
            logger.debug("No pricing for %s/%s, reporting zero cost", self._provider_name, self._model)
        message_cost = pricing.cost(usage) if pricing is not None else 0.0
        report = UsageReport(
            model=f"{self._provider_name}/{self._model}",
            sent_tokens=max(0, usage.input_tokens - usage.cached_input_tokens),
            received_tokens=usage.output_tokens,
            message_cost=message_cost,
            cache_write_tokens=usage.cache_write_tokens,
            cache_read_tokens=usage.cached_input_tokens,
            agent_total_cost=agent_total_cost + message_cost,
        )
        self.total.add(report)
        return report
