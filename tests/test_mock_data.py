"""Tests for mock questionnaire generation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from questionnaire_analysis.mock_data import (
    MOCK_QUESTIONNAIRE_ID,
    generate_mock_dataset,
    write_mock_dataset,
)
from questionnaire_analysis.pipeline import AnonymizationGate
from questionnaire_analysis.schemas import RawResponse


def test_generation_is_deterministic_per_seed():
    assert generate_mock_dataset(12, seed=5) == generate_mock_dataset(12, seed=5)
    assert generate_mock_dataset(12, seed=5) != generate_mock_dataset(12, seed=6)


def test_shape_and_identifiers():
    dataset = generate_mock_dataset(20, seed=1)
    questionnaire = dataset["questionnaire"]
    assert questionnaire["questionnaire_id"] == MOCK_QUESTIONNAIRE_ID
    assert len(questionnaire["groups"]) == 4
    assert len(questionnaire["questions"]) == 8
    assert len(dataset["consents"]) == 20

    response_ids = [item["response_id"] for item in dataset["responses"]]
    assert len(response_ids) == len(set(response_ids))
    question_ids = {item["question_id"] for item in questionnaire["questions"]}
    assert {item["question_id"] for item in dataset["responses"]} <= question_ids


def test_pii_rate_controls_fake_pii():
    clean = generate_mock_dataset(30, seed=2, pii_rate=0.0)
    assert not any("@example.test" in item["answer"] for item in clean["responses"])

    noisy = generate_mock_dataset(30, seed=2, pii_rate=1.0)
    gate = AnonymizationGate(salt="s")
    sanitized = gate.anonymize_responses(
        [RawResponse.model_validate(item) for item in noisy["responses"]]
    )
    assert all(item.detected_pii for item in sanitized)


def test_quasi_identifiers_repeat_across_respondents():
    dataset = generate_mock_dataset(8, seed=4)
    regions = [item["metadata"]["region"] for item in dataset["responses"]]
    assert min(regions.count(region) for region in set(regions)) >= 2


@pytest.mark.parametrize(("respondents", "pii_rate"), [(0, 0.1), (5, 1.5), (5, -0.1)])
def test_invalid_arguments(respondents, pii_rate):
    with pytest.raises(ValueError):
        generate_mock_dataset(respondents, pii_rate=pii_rate)


def test_write_mock_dataset(tmp_path: Path):
    path = write_mock_dataset(tmp_path / "mock" / "questionnaire.json", respondents=3)
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert set(payload) == {"questionnaire", "responses", "consents"}
