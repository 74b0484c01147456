"""Tests for thematic analysis and the shared validate-and-retry flow."""

from __future__ import annotations

import json

import pytest
from conftest import FakeProvider, canned_reply, make_data, make_questionnaire

from questionnaire_analysis.errors import (
    ConfigurationError,
    MalformedLLMOutput,
    ProviderUnavailable,
    ValidationError,
)
from questionnaire_analysis.models import ProviderAdapter, ProviderTransientError
from questionnaire_analysis.pipeline import AnalysisContext, ThematicAnalysis
from questionnaire_analysis.schemas import AnalysisType, JobOptions


def _analysis(settings, provider) -> ThematicAnalysis:
    adapter = ProviderAdapter(
        settings=settings,
        providers={"openai": provider, "anthropic": provider},
        sleep=lambda _: None,
    )
    return ThematicAnalysis(adapter, settings)


def _context(**options) -> AnalysisContext:
    return AnalysisContext(
        questionnaire=make_questionnaire(), options=JobOptions(**options), job_id="job-1"
    )


def test_themes_are_sorted_and_metadata_filled(settings, provider, sanitized):
    result = _analysis(settings, provider).analyze(_context(), sanitized)

    assert result.analysis_type == AnalysisType.THEMATIC
    assert result.questionnaire_id == "q1"
    assert result.job_id == "job-1"
    assert [theme["name"] for theme in result.results["themes"]] == ["Safety", "Transport"]
    assert result.results["theme_count"] == 2
    assert result.results["questions_analyzed"] == ["q-commute", "q-safe"]

    metadata = result.metadata
    assert (metadata.provider, metadata.model) == ("openai", "gpt-4o-mini")
    assert metadata.prompt_version == "thematic-v2"
    assert metadata.tokens_used == 150
    assert metadata.response_count == len(sanitized)
    assert metadata.confidence_score == pytest.approx(0.7)
    assert metadata.cost_estimate > 0


def test_prompt_lists_question_texts(settings, provider, sanitized):
    _analysis(settings, provider).analyze(_context(), sanitized)
    assert "Do you feel safe?" in provider.requests[0].prompt


def test_malformed_output_is_retried_once(settings, sanitized):
    replies = iter(["I could not do that.", None])

    def responder(request):
        reply = next(replies)
        return reply if reply is not None else canned_reply(request)

    provider = FakeProvider(responder)
    result = _analysis(settings, provider).analyze(_context(), sanitized)
    assert len(provider.requests) == 2
    assert result.results["theme_count"] == 2
    assert result.metadata.tokens_used == 300


@pytest.mark.parametrize(
    "reply",
    [
        "not json at all",
        json.dumps({"summary": "missing themes"}),
        json.dumps({"themes": [{"name": "x", "frequency": -1}]}),
        json.dumps({"themes": [{"name": "x", "frequency": 1, "sentiment": 3}]}),
    ],
)
def test_second_malformed_output_raises(settings, sanitized, reply):
    provider = FakeProvider(lambda request: reply)
    with pytest.raises(MalformedLLMOutput):
        _analysis(settings, provider).analyze(_context(), sanitized)
    assert len(provider.requests) == 2


def test_provider_failure_surfaces_as_provider_unavailable(settings, sanitized):
    provider = FakeProvider(lambda request: ProviderTransientError("overloaded"))
    with pytest.raises(ProviderUnavailable):
        _analysis(settings, provider).analyze(_context(), sanitized)


def test_raw_or_empty_input_is_rejected(settings, provider):
    analysis = _analysis(settings, provider)
    with pytest.raises(ValidationError):
        analysis.analyze(_context(), [])
    with pytest.raises(ValidationError):
        analysis.analyze(_context(), make_data().responses)
    assert provider.requests == []


def test_missing_adapter_is_a_configuration_error(settings, sanitized):
    with pytest.raises(ConfigurationError):
        ThematicAnalysis(None, settings).analyze(_context(), sanitized)


def test_explicit_provider_override(settings, provider, sanitized):
    result = _analysis(settings, provider).analyze(_context(provider="anthropic"), sanitized)
    assert result.metadata.provider == "anthropic"
    assert provider.requests[0].model == "claude-3-5-haiku-20241022"
