"""Prompt builders for questionnaire analysis."""

from questionnaire_analysis.prompts.analysis_prompts import (
    DEFAULT_RESPONSE_CAP,
    PROMPT_VERSIONS,
    build_prompt,
    system_prompt_for,
)

__all__ = [
    "DEFAULT_RESPONSE_CAP",
    "PROMPT_VERSIONS",
    "build_prompt",
    "system_prompt_for",
]
