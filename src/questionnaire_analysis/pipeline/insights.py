"""Cross-section sociological insights."""

from __future__ import annotations

import math
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from questionnaire_analysis.models import CompletionResult
from questionnaire_analysis.pipeline.base import AnalysisContext, AnalysisOutcome, BaseAnalysis
from questionnaire_analysis.schemas import (
    AnalysisType,
    Questionnaire,
    QuestionGroup,
    SanitizedResponse,
)

UNGROUPED_SECTION = "ungrouped"


class _InsightPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=300)
    description: str = ""
    sections: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    significance: str = "medium"


class _InsightsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    insights: list[_InsightPayload]
    narrative: str = ""


@dataclass(frozen=True, slots=True)
class Section:
    section_id: str
    groups: tuple[QuestionGroup, ...]
    question_ids: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "section_id": self.section_id,
            "titles": [group.title or group.group_id for group in self.groups],
            "question_ids": list(self.question_ids),
        }


def partition_sections(questionnaire: Questionnaire, max_sections: int = 4) -> list[Section]:
    """Split question groups, in ``order_index`` order, into at most ``max_sections`` runs.

    Questions whose group is unknown are collected into a trailing group.
    """

    if max_sections < 1:
        raise ValueError("max_sections must be positive.")

    groups = questionnaire.ordered_groups()
    known = {group.group_id for group in groups}
    if any(question.group_id not in known for question in questionnaire.questions):
        groups.append(
            QuestionGroup(group_id=UNGROUPED_SECTION, title="Ungrouped", order_index=10**9)
        )

    questions_by_group: dict[str, list[str]] = {}
    for question in sorted(
        questionnaire.questions, key=lambda item: (item.order_index, item.question_id)
    ):
        group_id = question.group_id if question.group_id in known else UNGROUPED_SECTION
        questions_by_group.setdefault(group_id, []).append(question.question_id)

    if not groups:
        return []

    per_section = math.ceil(len(groups) / max_sections)
    sections: list[Section] = []
    for start in range(0, len(groups), per_section):
        chunk = tuple(groups[start : start + per_section])
        question_ids = tuple(
            question_id
            for group in chunk
            for question_id in questions_by_group.get(group.group_id, [])
        )
        sections.append(Section(f"section-{len(sections) + 1}", chunk, question_ids))
    return sections


class InsightsAnalysis(BaseAnalysis):
    analysis_type = AnalysisType.INSIGHTS
    structural_field = "insights"
    payload_model = _InsightsPayload

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        sections = partition_sections(
            context.questionnaire, max_sections=self._settings.max_insight_sections
        )
        position = {
            question_id: (index, offset)
            for index, section in enumerate(sections)
            for offset, question_id in enumerate(section.question_ids)
        }
        tail = (len(sections), 0)
        ordered = sorted(
            responses, key=lambda response: position.get(response.question_id, tail)
        )
        extras = {"sections": [section.to_dict() for section in sections]}

        selection = self.select(context)
        calls: list[CompletionResult] = []
        payload = self.complete_and_parse(
            context, self.build_prompt(context, ordered, extras), selection, calls
        )
        return AnalysisOutcome(
            results={
                "insights": [insight.model_dump() for insight in payload.insights],
                "narrative": payload.narrative.strip(),
                "sections": extras["sections"],
                "section_count": len(sections),
            },
            response_count=len(responses),
            calls=calls,
            selection=selection,
        )
