"""Cross-question contradiction detection."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from itertools import combinations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questionnaire_analysis.models import CompletionResult
from questionnaire_analysis.pipeline.base import AnalysisContext, AnalysisOutcome, BaseAnalysis
from questionnaire_analysis.schemas import (
    AnalysisType,
    Question,
    Questionnaire,
    SanitizedResponse,
)

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = ("low", "medium", "high")


class _ContradictionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    respondent: str = ""
    type: str = Field(default="logical", min_length=1)
    severity: str = "medium"
    description: str = Field(min_length=1)
    explanation: str = ""

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("severity")
    @classmethod
    def _normalize_severity(cls, value: str) -> str:
        normalized = value.strip().lower()
        return normalized if normalized in SEVERITY_LEVELS else "medium"


class _ContradictionsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contradictions: list[_ContradictionPayload]


@dataclass(frozen=True, slots=True)
class QuestionPair:
    """Two questions from different groups plus the respondents who answered both."""

    first: Question
    second: Question
    respondents: tuple[str, ...]


def _ordered_questions(questionnaire: Questionnaire) -> list[Question]:
    group_order = {group.group_id: group.order_index for group in questionnaire.groups}
    return sorted(
        questionnaire.questions,
        key=lambda question: (
            group_order.get(question.group_id, len(group_order)),
            question.order_index,
            question.question_id,
        ),
    )


def eligible_question_pairs(
    questionnaire: Questionnaire,
    responses: list[SanitizedResponse],
    *,
    min_respondents: int = 3,
    max_pairs: int | None = None,
) -> list[QuestionPair]:
    """Pairs of questions from different groups answered by at least ``min_respondents`` people."""

    answered: dict[str, set[str]] = {}
    for response in responses:
        if response.text.strip():
            answered.setdefault(response.question_id, set()).add(response.anonymous_user_id)

    pairs: list[QuestionPair] = []
    for first, second in combinations(_ordered_questions(questionnaire), 2):
        if max_pairs is not None and len(pairs) >= max_pairs:
            break
        if first.group_id == second.group_id:
            continue
        common = answered.get(first.question_id, set()) & answered.get(second.question_id, set())
        if len(common) >= min_respondents:
            pairs.append(QuestionPair(first, second, tuple(sorted(common))))
    return pairs


def summarize_contradictions(contradictions: list[dict]) -> dict:
    """Severity distribution and most frequent type; empty input gives an empty type."""

    distribution = {level: 0 for level in SEVERITY_LEVELS}
    for item in contradictions:
        distribution[item["severity"]] += 1
    type_counts = Counter(item["type"] for item in contradictions)
    most_common = type_counts.most_common(1)[0][0] if type_counts else ""
    return {
        "total_contradictions": len(contradictions),
        "severity_distribution": distribution,
        "most_common_type": most_common,
    }


class ContradictionAnalysis(BaseAnalysis):
    analysis_type = AnalysisType.CONTRADICTIONS
    structural_field = "contradictions"
    payload_model = _ContradictionsPayload

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        pairs = eligible_question_pairs(
            context.questionnaire,
            responses,
            min_respondents=self._settings.min_contradiction_respondents,
            max_pairs=self._settings.max_contradiction_pairs,
        )
        if not pairs:
            logger.info("No eligible question pairs for contradiction analysis.")
            return AnalysisOutcome(
                results={
                    "contradictions": [],
                    "pairs_analyzed": 0,
                    **summarize_contradictions([]),
                },
                response_count=len(responses),
            )

        by_question_user: dict[tuple[str, str], SanitizedResponse] = {}
        for response in responses:
            key = (response.question_id, response.anonymous_user_id)
            if response.text.strip():
                by_question_user.setdefault(key, response)

        selection = self.select(context)
        calls: list[CompletionResult] = []
        contradictions: list[dict] = []
        for pair in pairs:
            paired = [
                {
                    "respondent": respondent,
                    "answer_a": by_question_user[(pair.first.question_id, respondent)].text,
                    "answer_b": by_question_user[(pair.second.question_id, respondent)].text,
                }
                for respondent in pair.respondents
            ]
            pair_responses = [
                by_question_user[(question.question_id, respondent)]
                for respondent in pair.respondents
                for question in (pair.first, pair.second)
            ]
            extras = {
                "question_a": {"question_id": pair.first.question_id, "text": pair.first.text},
                "question_b": {"question_id": pair.second.question_id, "text": pair.second.text},
                "paired_answers": paired,
            }
            payload = self.complete_and_parse(
                context, self.build_prompt(context, pair_responses, extras), selection, calls
            )
            for item in payload.contradictions:
                contradictions.append(
                    {
                        **item.model_dump(),
                        "question_pair": [pair.first.question_id, pair.second.question_id],
                    }
                )

        return AnalysisOutcome(
            results={
                "contradictions": contradictions,
                "pairs_analyzed": len(pairs),
                **summarize_contradictions(contradictions),
            },
            response_count=len(responses),
            calls=calls,
            selection=selection,
        )
