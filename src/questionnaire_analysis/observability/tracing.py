"""Optional LangSmith tracing for OpenAI provider calls."""

from __future__ import annotations

import logging
import os
from typing import Any

logger = logging.getLogger(__name__)


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def apply_tracing_env(*, enabled: bool, api_key: str = "", project: str = "") -> None:
    """Export LangSmith settings into the process env when they are not already set."""

    if enabled:
        os.environ.setdefault("LANGSMITH_TRACING", "true")
    if api_key:
        os.environ.setdefault("LANGSMITH_API_KEY", api_key)
    if project:
        os.environ.setdefault("LANGSMITH_PROJECT", project)


def get_tracing_status() -> dict[str, Any]:
    """Return effective LangSmith tracing status from the process env."""

    tracing_value = os.getenv("LANGSMITH_TRACING") or os.getenv("LANGCHAIN_TRACING_V2") or ""
    api_key = os.getenv("LANGSMITH_API_KEY") or os.getenv("LANGCHAIN_API_KEY") or ""
    return {
        "enabled": _is_truthy(tracing_value),
        "project": os.getenv("LANGSMITH_PROJECT") or os.getenv("LANGCHAIN_PROJECT") or "",
        "api_key_present": bool(api_key),
    }


def maybe_wrap_openai_client(client: Any, *, enabled: bool | None = None) -> tuple[Any, bool]:
    """Wrap an OpenAI client with the LangSmith tracer when tracing is on and available."""

    status = get_tracing_status()
    if enabled is None:
        enabled = status["enabled"]
    if not enabled or not status["api_key_present"]:
        return client, False

    try:
        from langsmith.wrappers import wrap_openai
    except ImportError:
        logger.warning("LangSmith tracing requested but the langsmith package is not installed.")
        return client, False

    return wrap_openai(client), True
