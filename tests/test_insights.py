"""Tests for cross-section insights."""

from __future__ import annotations

import pytest
from conftest import FakeProvider, make_questionnaire

from questionnaire_analysis.errors import MalformedLLMOutput
from questionnaire_analysis.models import ProviderAdapter
from questionnaire_analysis.pipeline import AnalysisContext, InsightsAnalysis
from questionnaire_analysis.pipeline.insights import UNGROUPED_SECTION, partition_sections
from questionnaire_analysis.schemas import Question, QuestionGroup, Questionnaire


def _questionnaire(group_count: int, *, stray: bool = False) -> Questionnaire:
    groups = [
        QuestionGroup(group_id=f"g{index}", title=f"Group {index}", order_index=group_count - index)
        for index in range(group_count)
    ]
    questions = [
        Question(question_id=f"q{index}", group_id=f"g{index}", text=f"Question {index}")
        for index in range(group_count)
    ]
    if stray:
        questions.append(Question(question_id="q-stray", group_id="g-missing", text="?"))
    return Questionnaire(questionnaire_id="q", groups=groups, questions=questions)


class TestPartitionSections:
    def test_groups_follow_order_index(self):
        sections = partition_sections(_questionnaire(3), max_sections=4)
        assert [section.question_ids for section in sections] == [("q2",), ("q1",), ("q0",)]
        assert [section.section_id for section in sections] == [
            "section-1",
            "section-2",
            "section-3",
        ]

    def test_groups_are_chunked_into_at_most_max_sections(self):
        sections = partition_sections(_questionnaire(6), max_sections=4)
        assert len(sections) == 3
        assert all(len(section.groups) == 2 for section in sections)

        sections = partition_sections(_questionnaire(9), max_sections=4)
        assert len(sections) <= 4
        assert sum(len(section.question_ids) for section in sections) == 9

    def test_questions_with_unknown_groups_form_a_trailing_section(self):
        sections = partition_sections(_questionnaire(2, stray=True), max_sections=4)
        assert sections[-1].groups[0].group_id == UNGROUPED_SECTION
        assert sections[-1].question_ids == ("q-stray",)

    def test_empty_questionnaire_and_invalid_max(self):
        assert partition_sections(Questionnaire(questionnaire_id="q")) == []
        with pytest.raises(ValueError):
            partition_sections(_questionnaire(2), max_sections=0)


def test_insights_prompt_orders_responses_by_section(settings, adapter, provider, sanitized):
    reversed_responses = list(reversed(sanitized))
    context = AnalysisContext(questionnaire=make_questionnaire())
    result = InsightsAnalysis(adapter, settings).analyze(context, reversed_responses)

    assert result.results["section_count"] == 2
    assert result.results["insights"][0]["title"] == "Mobility shapes safety"
    assert result.results["narrative"] == "Sections reinforce each other."
    assert result.metadata.model == "claude-3-5-sonnet-20241022"

    lines = [line for line in provider.requests[0].prompt.splitlines() if '"question_id"' in line]
    response_lines = [line for line in lines if line.startswith("{")]
    order = ["q-safe" if '"q-safe"' in line else "q-commute" for line in response_lines]
    assert order == sorted(order, key=lambda item: item != "q-safe")
    assert order.count("q-safe") == 4


def test_insights_without_titles_are_malformed(settings, sanitized):
    provider = FakeProvider(lambda request: '{"insights": [{"description": "no title"}]}')
    adapter = ProviderAdapter(
        settings=settings, providers={"anthropic": provider}, sleep=lambda _: None
    )
    with pytest.raises(MalformedLLMOutput):
        InsightsAnalysis(adapter, settings).analyze(
            AnalysisContext(questionnaire=make_questionnaire()), sanitized
        )
