"""Actionable recommendations scored for feasibility, complexity, and ROI."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questionnaire_analysis.models import CompletionResult
from questionnaire_analysis.pipeline.base import AnalysisContext, AnalysisOutcome, BaseAnalysis
from questionnaire_analysis.schemas import AnalysisResult, AnalysisType, SanitizedResponse

DEFAULT_IMPACT = 0.5
DEFAULT_COST = 50000.0
COST_NORMALIZER = 100000.0
PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}

_EXPERTISE_MARKERS = ("specialist", "expert", "specjalist", "ekspert")
_LONG_TIMEFRAME_MARKERS = ("month", "year", "miesiąc", "miesiec", "rok", "lat")
_COST_PATTERN = re.compile(r"(\d[\d\s,]*(?:\.\d+)?)\s*([km])?\b", re.IGNORECASE)


class _RecommendationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=300)
    description: str = ""
    priority: str = "medium"
    estimated_cost: float | int | str | None = None
    expected_impact: float | None = None
    timeframe: str = ""
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("priority")
    @classmethod
    def _normalize_priority(cls, value: str) -> str:
        return value.strip().lower()


class _RecommendationsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    recommendations: list[_RecommendationPayload]


def parse_cost(value: Any) -> float | None:
    """Read a cost from a number or free text like ``"15k PLN"``; None when absent."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    match = _COST_PATTERN.search(str(value))
    if not match:
        return None
    amount = float(re.sub(r"[\s,]", "", match.group(1)))
    suffix = (match.group(2) or "").lower()
    if suffix == "k":
        amount *= 1_000
    elif suffix == "m":
        amount *= 1_000_000
    return amount


def feasibility_score(recommendation: dict[str, Any]) -> float:
    score = 0.5
    priority = recommendation.get("priority")
    if priority == "high":
        score -= 0.1
    elif priority == "low":
        score += 0.1

    cost = parse_cost(recommendation.get("estimated_cost"))
    if cost is not None:
        if cost < 10000:
            score += 0.2
        elif cost > 100000:
            score -= 0.2

    dependencies = recommendation.get("dependencies") or []
    if len(dependencies) <= 2:
        score += 0.1
    elif len(dependencies) > 5:
        score -= 0.2

    return round(max(0.0, min(1.0, score)), 4)


def implementation_complexity(recommendation: dict[str, Any]) -> str:
    """Count complexity factors: none or one is low, two is medium, more is high."""

    cost = parse_cost(recommendation.get("estimated_cost"))
    description = (recommendation.get("description") or "").lower()
    timeframe = (recommendation.get("timeframe") or "").lower()
    factors = [
        bool(recommendation.get("dependencies")),
        cost is not None and cost > 50000,
        any(marker in description for marker in _EXPERTISE_MARKERS),
        any(marker in timeframe for marker in _LONG_TIMEFRAME_MARKERS),
    ]
    count = sum(factors)
    if count <= 1:
        return "low"
    if count == 2:
        return "medium"
    return "high"


def estimated_roi(recommendation: dict[str, Any]) -> float:
    impact = recommendation.get("expected_impact")
    if impact is None:
        impact = DEFAULT_IMPACT
    cost = parse_cost(recommendation.get("estimated_cost"))
    if cost is None:
        cost = DEFAULT_COST
    normalized_cost = min(max(cost, 0.0) / COST_NORMALIZER, 1.0)
    return round(max(0.0, min(1.0, impact * (1 - 0.5 * normalized_cost))), 4)


def rank_recommendations(recommendations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Attach scores and sort by priority rank, then feasibility, both descending."""

    scored = [
        {
            **item,
            "feasibility_score": feasibility_score(item),
            "implementation_complexity": implementation_complexity(item),
            "estimated_roi": estimated_roi(item),
        }
        for item in recommendations
    ]
    return sorted(
        scored,
        key=lambda item: (-PRIORITY_RANK.get(item.get("priority"), 0), -item["feasibility_score"]),
    )


def summarize_prior_results(results: list[AnalysisResult]) -> list[dict[str, Any]]:
    summaries = []
    for result in sorted(results, key=lambda item: item.analysis_type.value):
        if result.analysis_type == AnalysisType.RECOMMENDATIONS:
            continue
        payload = result.results
        summary: dict[str, Any] = {"analysis_type": result.analysis_type.value}
        for key in ("summary", "narrative"):
            if payload.get(key):
                summary[key] = payload[key]
        for key in ("themes", "clusters", "insights"):
            if payload.get(key):
                summary[key] = [
                    item.get("name") or item.get("title") for item in payload[key]
                ]
        if "total_contradictions" in payload:
            summary["total_contradictions"] = payload["total_contradictions"]
            summary["most_common_type"] = payload.get("most_common_type", "")
        summaries.append(summary)
    return summaries


class RecommendationsAnalysis(BaseAnalysis):
    analysis_type = AnalysisType.RECOMMENDATIONS
    structural_field = "recommendations"
    payload_model = _RecommendationsPayload

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        prior = summarize_prior_results(
            [
                result
                for result in context.prior_results
                if result.questionnaire_id == context.questionnaire_id
            ]
        )
        extras = {"prior_analyses": prior, "community_context": context.options.context}

        selection = self.select(context)
        calls: list[CompletionResult] = []
        payload = self.complete_and_parse(
            context, self.build_prompt(context, responses, extras), selection, calls
        )
        recommendations = rank_recommendations(
            [item.model_dump() for item in payload.recommendations]
        )
        return AnalysisOutcome(
            results={
                "recommendations": recommendations,
                "recommendation_count": len(recommendations),
                "prior_analyses_used": [item["analysis_type"] for item in prior],
            },
            response_count=len(responses),
            calls=calls,
            selection=selection,
        )
