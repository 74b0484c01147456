"""Tests for recommendation scoring and prior-result aggregation."""

from __future__ import annotations

import pytest
from conftest import make_questionnaire

from questionnaire_analysis.pipeline import AnalysisContext, RecommendationsAnalysis
from questionnaire_analysis.pipeline.recommendations import (
    estimated_roi,
    feasibility_score,
    implementation_complexity,
    parse_cost,
    rank_recommendations,
    summarize_prior_results,
)
from questionnaire_analysis.schemas import (
    AnalysisMetadata,
    AnalysisResult,
    AnalysisType,
    JobOptions,
)


def _prior(analysis_type: AnalysisType, results: dict, questionnaire_id: str = "q1"):
    return AnalysisResult(
        result_id=f"{questionnaire_id}-{analysis_type.value}",
        questionnaire_id=questionnaire_id,
        analysis_type=analysis_type,
        results=results,
        metadata=AnalysisMetadata(
            provider="openai", model="gpt-4o-mini", prompt_version="v", confidence_score=0.7
        ),
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        (True, None),
        (1200, 1200.0),
        (99.5, 99.5),
        ("15k PLN", 15000.0),
        ("about 1.5m", 1_500_000.0),
        ("2,000,000 zł", 2_000_000.0),
        ("free", None),
    ],
)
def test_parse_cost(value, expected):
    assert parse_cost(value) == expected


class TestScoring:
    def test_feasibility_adjustments(self):
        assert feasibility_score({"priority": "medium", "estimated_cost": "15k"}) == 0.6
        assert feasibility_score({"priority": "low", "estimated_cost": 500}) == 0.9
        assert feasibility_score(
            {"priority": "high", "estimated_cost": 2_000_000, "dependencies": list("abcdef")}
        ) == pytest.approx(0.0)

    def test_feasibility_stays_within_bounds(self):
        score = feasibility_score(
            {"priority": "high", "estimated_cost": 10**9, "dependencies": list("abcdefgh")}
        )
        assert 0.0 <= score <= 1.0

    def test_complexity_counts_factors(self):
        assert implementation_complexity({}) == "low"
        assert implementation_complexity({"dependencies": ["permit"]}) == "low"
        medium = {"dependencies": ["permit"], "estimated_cost": 60000}
        assert implementation_complexity(medium) == "medium"
        high = {**medium, "description": "Needs a traffic specialist", "timeframe": "2 years"}
        assert implementation_complexity(high) == "high"

    def test_roi_uses_defaults_for_missing_values(self):
        assert estimated_roi({}) == pytest.approx(0.375)
        assert estimated_roi({"expected_impact": 0.6, "estimated_cost": "15k"}) == pytest.approx(
            0.555
        )
        assert estimated_roi({"expected_impact": 1.0, "estimated_cost": 10**7}) == 0.5

    def test_ranking_orders_by_priority_then_feasibility(self):
        ranked = rank_recommendations(
            [
                {"title": "cheap low", "priority": "low", "estimated_cost": 100},
                {"title": "costly high", "priority": "high", "estimated_cost": 500000},
                {"title": "cheap high", "priority": "high", "estimated_cost": 100},
            ]
        )
        assert [item["title"] for item in ranked] == ["cheap high", "costly high", "cheap low"]
        assert {"feasibility_score", "implementation_complexity", "estimated_roi"} <= set(
            ranked[0]
        )


def test_prior_summaries_skip_recommendations():
    summaries = summarize_prior_results(
        [
            _prior(AnalysisType.THEMATIC, {"themes": [{"name": "Safety"}], "summary": "Calm."}),
            _prior(AnalysisType.RECOMMENDATIONS, {"recommendations": []}),
            _prior(
                AnalysisType.CONTRADICTIONS,
                {"contradictions": [], "total_contradictions": 0, "most_common_type": ""},
            ),
            _prior(AnalysisType.INSIGHTS, {"insights": [{"title": "Link"}], "narrative": "N"}),
        ]
    )
    assert [item["analysis_type"] for item in summaries] == [
        "contradictions",
        "insights",
        "thematic",
    ]
    assert summaries[1] == {"analysis_type": "insights", "narrative": "N", "insights": ["Link"]}
    assert summaries[2]["themes"] == ["Safety"]


def test_recommendations_use_same_questionnaire_priors_and_context(
    settings, adapter, provider, sanitized
):
    context = AnalysisContext(
        questionnaire=make_questionnaire(),
        options=JobOptions(context={"budget": "municipal"}),
        prior_results=[
            _prior(AnalysisType.THEMATIC, {"themes": [{"name": "Safety"}]}),
            _prior(AnalysisType.INSIGHTS, {"insights": [{"title": "Elsewhere"}]}, "q2"),
        ],
    )
    result = RecommendationsAnalysis(adapter, settings).analyze(context, sanitized)

    prompt = provider.requests[0].prompt
    assert '"budget": "municipal"' in prompt
    assert "Safety" in prompt
    assert "Elsewhere" not in prompt

    results = result.results
    assert results["prior_analyses_used"] == ["thematic"]
    assert results["recommendation_count"] == 2
    titles = [item["title"] for item in results["recommendations"]]
    assert titles == ["New tram line", "Light the park"]
    park = results["recommendations"][1]
    assert park["feasibility_score"] == 0.6
    assert park["estimated_roi"] == pytest.approx(0.555)
    assert result.metadata.model == "claude-3-5-sonnet-20241022"
