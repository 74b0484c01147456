"""Shared contract for the analysis types."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from questionnaire_analysis.concurrency import CancellationToken
from questionnaire_analysis.config import Settings
from questionnaire_analysis.errors import ConfigurationError, MalformedLLMOutput, ValidationError
from questionnaire_analysis.models import CompletionResult, ProviderAdapter, select_provider
from questionnaire_analysis.models.selection import ProviderSelection
from questionnaire_analysis.prompts import PROMPT_VERSIONS, build_prompt, system_prompt_for
from questionnaire_analysis.schemas import (
    AnalysisMetadata,
    AnalysisResult,
    AnalysisType,
    JobOptions,
    Questionnaire,
    SanitizedResponse,
)

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True)
class AnalysisContext:
    """Everything one analysis step needs besides the responses themselves."""

    questionnaire: Questionnaire
    options: JobOptions = field(default_factory=JobOptions)
    job_id: str | None = None
    cancel_token: CancellationToken | None = None
    on_chunk: Callable[[str], None] | None = None
    prior_results: list[AnalysisResult] = field(default_factory=list)

    @property
    def questionnaire_id(self) -> str:
        return self.questionnaire.questionnaire_id

    @property
    def language(self) -> str:
        return self.options.language


@dataclass(slots=True)
class AnalysisOutcome:
    """Type-specific payload plus the provider calls that produced it."""

    results: dict[str, Any]
    response_count: int
    calls: list[CompletionResult] = field(default_factory=list)
    selection: ProviderSelection | None = None


def parse_llm_json(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating fences and surrounding prose."""

    candidate = (text or "").strip()
    if not candidate:
        raise MalformedLLMOutput("Model returned empty content.")

    fenced = _FENCE_PATTERN.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start < 0 or end <= start:
            raise MalformedLLMOutput(f"Model response was not valid JSON: {text[:200]!r}") from None
        try:
            payload = json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as exc:
            raise MalformedLLMOutput(f"Model response was not valid JSON: {text[:200]!r}") from exc

    if not isinstance(payload, dict):
        raise MalformedLLMOutput(f"Expected JSON object, got {type(payload).__name__}.")
    return payload


def confidence_score(response_count: int, has_structure: bool) -> float:
    """0.5 base, a response-count bonus, and 0.2 for a non-empty structural field; capped at 1."""

    score = 0.5
    if response_count >= 100:
        score += 0.3
    elif response_count >= 50:
        score += 0.2
    elif response_count >= 20:
        score += 0.1
    if has_structure:
        score += 0.2
    return round(min(1.0, max(0.0, score)), 4)


def validate_sanitized(responses: Sequence[Any]) -> list[SanitizedResponse]:
    """Reject empty input and anything that did not come out of the anonymization gate."""

    if not responses:
        raise ValidationError("No sanitized responses to analyze.")
    validated: list[SanitizedResponse] = []
    for item in responses:
        if not isinstance(item, SanitizedResponse) or not item.id.startswith("anon_"):
            raise ValidationError(f"Input is not a sanitized response: {type(item).__name__}.")
        validated.append(item)
    return validated


class BaseAnalysis:
    """One analysis type: build prompts, call the provider, validate, post-process."""

    analysis_type: ClassVar[AnalysisType]
    structural_field: ClassVar[str]
    payload_model: ClassVar[type[BaseModel]]

    def __init__(self, adapter: ProviderAdapter | None, settings: Settings) -> None:
        self._adapter = adapter
        self._settings = settings

    def analyze(
        self,
        context: AnalysisContext,
        responses: Sequence[SanitizedResponse],
    ) -> AnalysisResult:
        sanitized = validate_sanitized(responses)
        started = time.perf_counter()
        outcome = self.run(context, sanitized)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        selection = outcome.selection
        metadata = AnalysisMetadata(
            provider=selection.provider if selection else "none",
            model=selection.model if selection else "none",
            prompt_version=PROMPT_VERSIONS[self.analysis_type],
            tokens_used=sum(call.tokens_used for call in outcome.calls),
            processing_time_ms=elapsed_ms,
            confidence_score=confidence_score(
                outcome.response_count, bool(outcome.results.get(self.structural_field))
            ),
            response_count=outcome.response_count,
            cost_estimate=round(sum(call.cost_estimate for call in outcome.calls), 6),
            streamed=any(call.streamed for call in outcome.calls),
        )
        return AnalysisResult(
            result_id=uuid.uuid4().hex,
            questionnaire_id=context.questionnaire_id,
            analysis_type=self.analysis_type,
            job_id=context.job_id,
            results=outcome.results,
            metadata=metadata,
        )

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        raise NotImplementedError

    def select(self, context: AnalysisContext) -> ProviderSelection:
        return select_provider(self.analysis_type, context.options, self._settings)

    def build_prompt(
        self,
        context: AnalysisContext,
        responses: Sequence[SanitizedResponse],
        extras: dict[str, Any] | None = None,
    ) -> str:
        return build_prompt(
            self.analysis_type,
            responses,
            context.options,
            context.language,
            extras=extras,
            response_cap=self._settings.max_responses_per_prompt,
        )

    def complete_and_parse(
        self,
        context: AnalysisContext,
        prompt: str,
        selection: ProviderSelection,
        calls: list[CompletionResult],
        *,
        check: Callable[[Any], None] | None = None,
    ) -> Any:
        """Call the provider and validate its JSON, retrying exactly once on malformed output.

        ``check`` may raise MalformedLLMOutput for semantic problems, which also
        triggers the retry.
        """

        if self._adapter is None:
            raise ConfigurationError(f"No provider adapter configured for {self.analysis_type}.")

        last_error: Exception | None = None
        for attempt in range(2):
            if context.cancel_token is not None:
                context.cancel_token.raise_if_cancelled()
            completion = self._adapter.call(
                prompt,
                system_prompt=system_prompt_for(self.analysis_type, context.language),
                selection=selection,
                options=context.options,
                cancel_token=context.cancel_token,
                on_chunk=context.on_chunk,
            )
            calls.append(completion)
            try:
                parsed = self.payload_model.model_validate(parse_llm_json(completion.text))
                if check is not None:
                    check(parsed)
                return parsed
            except (MalformedLLMOutput, PydanticValidationError) as exc:
                last_error = exc
                logger.warning(
                    "Malformed %s output from %s/%s (attempt %d): %s",
                    self.analysis_type,
                    selection.provider,
                    selection.model,
                    attempt + 1,
                    str(exc).splitlines()[0],
                )
        raise MalformedLLMOutput(
            f"{self.analysis_type} output failed validation twice: {last_error}"
        ) from last_error
