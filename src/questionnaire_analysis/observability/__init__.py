"""Observability helpers."""

from questionnaire_analysis.observability.tracing import (
    apply_tracing_env,
    get_tracing_status,
    maybe_wrap_openai_client,
)

__all__ = [
    "apply_tracing_env",
    "get_tracing_status",
    "maybe_wrap_openai_client",
]
