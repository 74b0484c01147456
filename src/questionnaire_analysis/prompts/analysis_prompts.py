"""Prompts for the five questionnaire analysis types."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from questionnaire_analysis.schemas import AnalysisType, JobOptions, SanitizedResponse

DEFAULT_RESPONSE_CAP = 50

PROMPT_VERSIONS: dict[AnalysisType, str] = {
    AnalysisType.THEMATIC: "thematic-v2",
    AnalysisType.CLUSTERS: "clusters-v2",
    AnalysisType.CONTRADICTIONS: "contradictions-v2",
    AnalysisType.INSIGHTS: "insights-v2",
    AnalysisType.RECOMMENDATIONS: "recommendations-v2",
}

_ROLE = """You are a sociologist analyzing anonymized questionnaire responses.
Bracketed tokens such as [PERSON] or [EMAIL] mark redacted personal data.
Never try to reconstruct redacted data and never invent respondents.
"""

_SCHEMAS: dict[AnalysisType, str] = {
    AnalysisType.THEMATIC: """{
  "themes": [
    {
      "name": "<short theme name>",
      "description": "<one sentence>",
      "frequency": <number of responses expressing the theme, integer >= 0>,
      "examples": ["<verbatim redacted quote>", "..."],
      "sentiment": <float from -1.0 to 1.0>,
      "keywords": ["<keyword>", "..."]
    }
  ],
  "summary": "<two or three sentences>"
}""",
    AnalysisType.CLUSTERS: """{
  "clusters": [
    {
      "name": "<short cluster name>",
      "description": "<one sentence>",
      "members": ["<response id>", "..."],
      "sentiment": <float from -1.0 to 1.0>,
      "characteristics": ["<shared trait>", "..."]
    }
  ],
  "summary": "<two or three sentences>"
}""",
    AnalysisType.CONTRADICTIONS: """{
  "contradictions": [
    {
      "respondent": "<anonymous user id>",
      "type": "<logical | factual | attitudinal | behavioral>",
      "severity": "<low | medium | high>",
      "description": "<what is inconsistent>",
      "explanation": "<plausible sociological reading>"
    }
  ]
}""",
    AnalysisType.INSIGHTS: """{
  "insights": [
    {
      "title": "<short title>",
      "description": "<two or three sentences>",
      "sections": ["<section id>", "..."],
      "evidence": ["<redacted quote>", "..."],
      "significance": "<low | medium | high>"
    }
  ],
  "narrative": "<short cross-section narrative>"
}""",
    AnalysisType.RECOMMENDATIONS: """{
  "recommendations": [
    {
      "title": "<short title>",
      "description": "<what to do and who is involved>",
      "priority": "<low | medium | high>",
      "estimated_cost": <integer cost estimate in local currency, or null>,
      "expected_impact": <float from 0.0 to 1.0>,
      "timeframe": "<e.g. 3 months>",
      "dependencies": ["<prerequisite>", "..."]
    }
  ]
}""",
}

_TASKS: dict[AnalysisType, str] = {
    AnalysisType.THEMATIC: (
        "Identify the recurring themes in the responses. Count how many responses "
        "express each theme and quote short redacted examples."
    ),
    AnalysisType.CLUSTERS: (
        "Group the responses into clusters of respondents with similar views. Every "
        "member must be a response id from the input; use each id at most once."
    ),
    AnalysisType.CONTRADICTIONS: (
        "For each question pair, compare the paired answers of each respondent and "
        "report answers that are inconsistent with each other."
    ),
    AnalysisType.INSIGHTS: (
        "Read the questionnaire sections in order and describe insights that only "
        "emerge when sections are compared with each other."
    ),
    AnalysisType.RECOMMENDATIONS: (
        "Propose concrete, actionable recommendations grounded in the responses and "
        "in the prior analysis results."
    ),
}

_LANGUAGE_NAMES = {"en": "English", "pl": "Polish"}


def system_prompt_for(analysis_type: AnalysisType, language: str = "en") -> str:
    """Return the system prompt for one analysis type."""

    analysis_type = AnalysisType(analysis_type)
    language_name = _LANGUAGE_NAMES.get(language, "English")
    return (
        f"{_ROLE}\n"
        "Return strict JSON only, with no markdown and no commentary, "
        "matching exactly this shape:\n"
        f"{_SCHEMAS[analysis_type]}\n\n"
        f"Write every human-readable value in {language_name}."
    )


def _render_response(response: SanitizedResponse) -> str:
    return json.dumps(
        {"id": response.id, "question_id": response.question_id, "text": response.text},
        ensure_ascii=False,
        sort_keys=True,
    )


def build_prompt(
    analysis_type: AnalysisType,
    sanitized_responses: Sequence[SanitizedResponse],
    options: JobOptions | None,
    language: str = "en",
    *,
    extras: dict[str, Any] | None = None,
    response_cap: int = DEFAULT_RESPONSE_CAP,
) -> str:
    """Build the user prompt for one analysis call.

    The output depends only on the arguments, so identical inputs always
    produce identical prompts. At most ``options.max_responses`` (or
    ``response_cap``) responses are included.
    """

    analysis_type = AnalysisType(analysis_type)
    cap = (options.max_responses if options and options.max_responses else None) or response_cap
    included = list(sanitized_responses)[: max(0, cap)]
    language_name = _LANGUAGE_NAMES.get(language, "English")

    lines = [
        f"Task: {_TASKS[analysis_type]}",
        f"Analysis type: {analysis_type.value}",
        f"Output language: {language_name}",
        f"Responses included: {len(included)} of {len(sanitized_responses)}",
    ]
    if extras:
        lines.append("Context:")
        lines.append(json.dumps(extras, ensure_ascii=False, sort_keys=True, indent=2, default=str))
    lines.append("Responses (one JSON object per line):")
    lines.extend(_render_response(response) for response in included)
    lines.append("")
    lines.append("Return strict JSON with the required keys for this analysis type.")
    return "\n".join(lines)
