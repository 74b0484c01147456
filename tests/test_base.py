"""Tests for shared analysis helpers: JSON parsing, confidence, and input checks."""

from __future__ import annotations

import pytest

from questionnaire_analysis.errors import MalformedLLMOutput, ValidationError
from questionnaire_analysis.pipeline.base import (
    confidence_score,
    parse_llm_json,
    validate_sanitized,
)
from questionnaire_analysis.schemas import RawResponse, SanitizedResponse


class TestParseLLMJson:
    def test_plain_object(self):
        assert parse_llm_json('{"themes": []}') == {"themes": []}

    def test_fenced_object(self):
        assert parse_llm_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_object_inside_prose(self):
        assert parse_llm_json('Sure! Here it is: {"a": {"b": 2}} Hope it helps.') == {
            "a": {"b": 2}
        }

    @pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]", "{broken"])
    def test_unusable_output_raises(self, text):
        with pytest.raises(MalformedLLMOutput):
            parse_llm_json(text)


@pytest.mark.parametrize(
    ("count", "structured", "expected"),
    [
        (0, False, 0.5),
        (19, True, 0.7),
        (20, False, 0.6),
        (50, True, 0.9),
        (100, True, 1.0),
        (1000, False, 0.8),
    ],
)
def test_confidence_score(count, structured, expected):
    assert confidence_score(count, structured) == pytest.approx(expected)


def test_validate_sanitized_rejects_empty_and_raw_input(sanitized):
    assert validate_sanitized(sanitized) == sanitized

    with pytest.raises(ValidationError):
        validate_sanitized([])
    raw = RawResponse(response_id="r", question_id="q", user_id="u", answer="hi")
    with pytest.raises(ValidationError):
        validate_sanitized([raw])
    forged = SanitizedResponse(
        id="r", question_id="q", anonymous_user_id="u", text="hi", checksum="x"
    )
    with pytest.raises(ValidationError):
        validate_sanitized([forged])
