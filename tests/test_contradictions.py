"""Tests for cross-question contradiction detection."""

from __future__ import annotations

import json

import pytest
from conftest import FakeProvider, make_questionnaire

from questionnaire_analysis.models import ProviderAdapter
from questionnaire_analysis.pipeline import AnalysisContext, ContradictionAnalysis
from questionnaire_analysis.pipeline.contradictions import (
    eligible_question_pairs,
    summarize_contradictions,
)
from questionnaire_analysis.schemas import Question, QuestionGroup, Questionnaire


def _analysis(settings, provider) -> ContradictionAnalysis:
    adapter = ProviderAdapter(
        settings=settings,
        providers={"openai": provider, "anthropic": provider},
        sleep=lambda _: None,
    )
    return ContradictionAnalysis(adapter, settings)


def _context() -> AnalysisContext:
    return AnalysisContext(questionnaire=make_questionnaire())


class TestEligibleQuestionPairs:
    def test_pairs_need_enough_shared_respondents(self, sanitized):
        pairs = eligible_question_pairs(make_questionnaire(), sanitized, min_respondents=4)
        assert len(pairs) == 1
        assert (pairs[0].first.question_id, pairs[0].second.question_id) == (
            "q-safe",
            "q-commute",
        )
        assert len(pairs[0].respondents) == 4

        assert eligible_question_pairs(make_questionnaire(), sanitized, min_respondents=5) == []

    def test_blank_answers_do_not_count(self, sanitized):
        blanked = [
            item.model_copy(update={"text": ""}) if index < 4 else item
            for index, item in enumerate(sanitized)
        ]
        pairs = eligible_question_pairs(make_questionnaire(), blanked, min_respondents=3)
        assert pairs == []

    def test_questions_in_the_same_group_are_never_paired(self, sanitized):
        questionnaire = Questionnaire(
            questionnaire_id="q1",
            groups=[QuestionGroup(group_id="g", order_index=0)],
            questions=[
                Question(question_id="q-safe", group_id="g", text="a"),
                Question(question_id="q-commute", group_id="g", text="b"),
            ],
        )
        assert eligible_question_pairs(questionnaire, sanitized, min_respondents=1) == []

    def test_max_pairs_caps_the_result(self, sanitized):
        questionnaire = make_questionnaire()
        assert eligible_question_pairs(questionnaire, sanitized, max_pairs=0) == []
        assert len(eligible_question_pairs(questionnaire, sanitized, max_pairs=1)) == 1


def test_summary_counts_severities_and_most_common_type():
    summary = summarize_contradictions(
        [
            {"severity": "high", "type": "logical"},
            {"severity": "low", "type": "attitudinal"},
            {"severity": "high", "type": "attitudinal"},
        ]
    )
    assert summary == {
        "total_contradictions": 3,
        "severity_distribution": {"low": 1, "medium": 0, "high": 2},
        "most_common_type": "attitudinal",
    }
    assert summarize_contradictions([])["most_common_type"] == ""


def test_no_eligible_pairs_means_no_provider_call(settings, provider, sanitized):
    settings.min_contradiction_respondents = 10
    result = _analysis(settings, provider).analyze(_context(), sanitized)

    assert provider.requests == []
    assert result.results["contradictions"] == []
    assert result.results["pairs_analyzed"] == 0
    assert result.results["total_contradictions"] == 0
    assert result.metadata.confidence_score == pytest.approx(0.5)


def test_each_pair_gets_one_call_and_results_are_normalized(settings, provider, sanitized):
    result = _analysis(settings, provider).analyze(_context(), sanitized)

    assert len(provider.requests) == 1
    request = provider.requests[0]
    assert request.model == "claude-3-5-sonnet-20241022"
    assert "Do you feel safe?" in request.prompt
    assert "paired_answers" in request.prompt

    item = result.results["contradictions"][0]
    assert item["type"] == "attitudinal"
    assert item["severity"] == "high"
    assert item["question_pair"] == ["q-safe", "q-commute"]
    assert result.results["severity_distribution"]["high"] == 1
    assert result.results["most_common_type"] == "attitudinal"


def test_unknown_severity_defaults_to_medium(settings, sanitized):
    reply = json.dumps(
        {"contradictions": [{"description": "Mismatch", "severity": "catastrophic"}]}
    )
    result = _analysis(settings, FakeProvider(lambda request: reply)).analyze(
        _context(), sanitized
    )
    assert result.results["contradictions"][0]["severity"] == "medium"


def test_blank_duplicate_answer_does_not_hide_the_real_one(settings, provider, sanitized):
    first = sanitized[0]
    blank = first.model_copy(update={"id": "anon_blank", "text": "  "})
    _analysis(settings, provider).analyze(_context(), [blank, *sanitized])

    prompt = provider.requests[0].prompt
    assert first.question_id == "q-safe"
    assert f'"answer_a": {json.dumps(first.text, ensure_ascii=False)}' in prompt
    assert "anon_blank" not in prompt
