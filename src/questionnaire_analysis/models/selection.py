"""Provider/model selection policy and cost accounting."""

from __future__ import annotations

from dataclasses import dataclass
from math import ceil

from questionnaire_analysis.config import Settings
from questionnaire_analysis.schemas import AnalysisType, JobOptions

SUPPORTED_PROVIDERS = ("openai", "anthropic")

FAST_ANALYSIS_TYPES = frozenset({AnalysisType.THEMATIC, AnalysisType.CLUSTERS})

PROMPT_TOKEN_SHARE = 0.7


@dataclass(frozen=True, slots=True)
class ModelPrice:
    """USD per 1K tokens."""

    input_per_1k: float
    output_per_1k: float


COST_TABLE: dict[str, dict[str, ModelPrice]] = {
    "openai": {
        "gpt-4o-mini": ModelPrice(0.00015, 0.0006),
        "gpt-4-turbo-preview": ModelPrice(0.01, 0.03),
    },
    "anthropic": {
        "claude-3-5-sonnet-20241022": ModelPrice(0.003, 0.015),
        "claude-3-5-haiku-20241022": ModelPrice(0.00025, 0.00125),
    },
}


@dataclass(frozen=True, slots=True)
class ProviderSelection:
    provider: str
    model: str
    tier: str


def tier_for(analysis_type: AnalysisType) -> str:
    """Low-interpretive-load types run on the fast tier, the rest on premium."""

    return "fast" if AnalysisType(analysis_type) in FAST_ANALYSIS_TYPES else "premium"


def infer_provider(model: str) -> str:
    return "anthropic" if model.strip().lower().startswith("claude") else "openai"


def select_provider(
    analysis_type: AnalysisType,
    options: JobOptions | None = None,
    settings: Settings | None = None,
) -> ProviderSelection:
    """Pick (provider, model) for one analysis call.

    An explicit provider and/or model in ``options`` wins; a model alone implies
    its provider. Otherwise thematic and clusters use the fast tier and the
    interpretive types use the premium tier.
    """

    settings = settings or Settings()
    options = options or JobOptions()
    tier = tier_for(analysis_type)
    requested_model = (options.model or "").strip()

    if options.provider != "auto":
        provider = options.provider
    elif requested_model:
        provider = infer_provider(requested_model)
    else:
        provider = settings.fast_provider if tier == "fast" else settings.premium_provider

    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported provider '{provider}'.")
    model = requested_model or settings.model_for(provider, tier)
    return ProviderSelection(provider=provider, model=model, tier=tier)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""

    return ceil(len(text) / 4) if text else 0


def price_for(provider: str, model: str) -> ModelPrice:
    """Exact price, else the longest listed prefix, else the provider's cheapest model."""

    table = COST_TABLE.get(provider, {})
    if model in table:
        return table[model]
    prefixes = [name for name in table if model.startswith(name)]
    if prefixes:
        return table[max(prefixes, key=len)]
    if table:
        return min(table.values(), key=lambda price: price.input_per_1k + price.output_per_1k)
    return ModelPrice(0.0, 0.0)


def estimate_cost(provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated USD cost of one call."""

    price = price_for(provider, model)
    cost = (
        max(0, prompt_tokens) / 1000 * price.input_per_1k
        + max(0, completion_tokens) / 1000 * price.output_per_1k
    )
    return round(cost, 6)


def split_total_tokens(total_tokens: int) -> tuple[int, int]:
    """Split a bare total into (prompt, completion) using a 70/30 ratio."""

    prompt_tokens = round(max(0, total_tokens) * PROMPT_TOKEN_SHARE)
    return prompt_tokens, max(0, total_tokens) - prompt_tokens


def estimate_cost_from_total(provider: str, model: str, total_tokens: int) -> float:
    prompt_tokens, completion_tokens = split_total_tokens(total_tokens)
    return estimate_cost(provider, model, prompt_tokens, completion_tokens)
