"""Thematic analysis: recurring themes with frequency, sentiment, and examples."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from questionnaire_analysis.models import CompletionResult
from questionnaire_analysis.pipeline.base import AnalysisContext, AnalysisOutcome, BaseAnalysis
from questionnaire_analysis.schemas import AnalysisType, SanitizedResponse


class _ThemePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    frequency: int = Field(ge=0)
    examples: list[str] = Field(default_factory=list)
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    keywords: list[str] = Field(default_factory=list)


class _ThematicPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    themes: list[_ThemePayload]
    summary: str = ""


class ThematicAnalysis(BaseAnalysis):
    analysis_type = AnalysisType.THEMATIC
    structural_field = "themes"
    payload_model = _ThematicPayload

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        questions = context.questionnaire.question_by_id()
        asked = sorted({response.question_id for response in responses})
        extras = {
            "questions": [
                {"question_id": question_id, "text": questions[question_id].text}
                for question_id in asked
                if question_id in questions
            ]
        }
        selection = self.select(context)
        calls: list[CompletionResult] = []
        payload = self.complete_and_parse(
            context, self.build_prompt(context, responses, extras), selection, calls
        )

        themes = sorted(
            (theme.model_dump() for theme in payload.themes),
            key=lambda theme: (-theme["frequency"], theme["name"]),
        )
        results = {
            "themes": themes,
            "summary": payload.summary.strip(),
            "theme_count": len(themes),
            "questions_analyzed": asked,
        }
        return AnalysisOutcome(
            results=results,
            response_count=len(responses),
            calls=calls,
            selection=selection,
        )
