"""Model client abstractions."""

from questionnaire_analysis.models.adapter import (
    CompletionResult,
    ProviderAdapter,
    build_provider,
)
from questionnaire_analysis.models.anthropic_client import AnthropicMessagesProvider
from questionnaire_analysis.models.base import (
    ChunkStream,
    Completion,
    CompletionRequest,
    LLMProvider,
    ProviderAuthError,
    ProviderCapabilities,
    ProviderError,
    ProviderRequestError,
    ProviderTransientError,
)
from questionnaire_analysis.models.jina_client import EmbeddingProvider, JinaEmbeddingClient
from questionnaire_analysis.models.openai_client import OpenAIChatProvider
from questionnaire_analysis.models.selection import (
    COST_TABLE,
    ProviderSelection,
    estimate_cost,
    estimate_cost_from_total,
    estimate_tokens,
    select_provider,
)

__all__ = [
    "COST_TABLE",
    "AnthropicMessagesProvider",
    "ChunkStream",
    "Completion",
    "CompletionRequest",
    "CompletionResult",
    "EmbeddingProvider",
    "JinaEmbeddingClient",
    "LLMProvider",
    "OpenAIChatProvider",
    "ProviderAdapter",
    "ProviderAuthError",
    "ProviderCapabilities",
    "ProviderError",
    "ProviderRequestError",
    "ProviderSelection",
    "ProviderTransientError",
    "build_provider",
    "estimate_cost",
    "estimate_cost_from_total",
    "estimate_tokens",
    "select_provider",
]
