"""Loaders for questionnaire datasets."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from questionnaire_analysis.schemas import (
    ConsentRecord,
    Questionnaire,
    QuestionnaireData,
    RawResponse,
)

DATASET_SCHEMA_VERSION = "1.0.0"


class QuestionnaireDatasetError(ValueError):
    """Raised when a questionnaire dataset fails schema or integrity checks."""


@dataclass(frozen=True)
class QuestionnaireDataset:
    """A questionnaire with its responses and the consents collected for it."""

    data: QuestionnaireData
    consents: list[ConsentRecord] = field(default_factory=list)

    @property
    def questionnaire_id(self) -> str:
        return self.data.questionnaire_id


@dataclass(frozen=True)
class DatasetSummary:
    """Aggregate summary for one questionnaire dataset."""

    group_count: int
    question_count: int
    response_count: int
    respondent_count: int
    granted_consent_count: int
    answered_question_count: int


@dataclass(frozen=True)
class ValidationErrorRecord:
    """One problem found while scanning a dataset."""

    location: str
    code: str
    message: str


@dataclass(frozen=True)
class DatasetValidationReport:
    """Validation results for a questionnaire dataset file."""

    schema_version: str
    input_path: str
    questionnaire_id: str | None
    error_count: int
    dropped_error_count: int
    is_valid: bool
    summary: DatasetSummary
    errors: list[ValidationErrorRecord]

    def to_dict(self) -> dict:
        """Render report as a JSON-serializable dictionary."""

        return {
            "schema_version": self.schema_version,
            "input_path": self.input_path,
            "questionnaire_id": self.questionnaire_id,
            "error_count": self.error_count,
            "dropped_error_count": self.dropped_error_count,
            "is_valid": self.is_valid,
            "summary": asdict(self.summary),
            "errors": [asdict(item) for item in self.errors],
        }


def _read_document(file_path: Path) -> dict[str, Any]:
    if not file_path.exists():
        raise QuestionnaireDatasetError(f"Dataset file does not exist: {file_path}")
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise QuestionnaireDatasetError(f"Invalid JSON in {file_path}: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise QuestionnaireDatasetError(
            f"Expected a JSON object in {file_path}, got {type(payload).__name__}."
        )
    return payload


def summarize_dataset(dataset: QuestionnaireDataset) -> DatasetSummary:
    responses = dataset.data.responses
    return DatasetSummary(
        group_count=len(dataset.data.questionnaire.groups),
        question_count=len(dataset.data.questionnaire.questions),
        response_count=len(responses),
        respondent_count=len({response.user_id for response in responses}),
        granted_consent_count=sum(1 for consent in dataset.consents if consent.granted),
        answered_question_count=len({response.question_id for response in responses}),
    )


def _integrity_errors(dataset: QuestionnaireDataset) -> list[ValidationErrorRecord]:
    errors: list[ValidationErrorRecord] = []
    questionnaire = dataset.data.questionnaire
    group_ids = {group.group_id for group in questionnaire.groups}
    question_ids: set[str] = set()
    for index, question in enumerate(questionnaire.questions):
        if question.question_id in question_ids:
            errors.append(
                ValidationErrorRecord(
                    f"questionnaire.questions[{index}]",
                    "duplicate_question_id",
                    f"Duplicate question_id '{question.question_id}'.",
                )
            )
        question_ids.add(question.question_id)
        if group_ids and question.group_id not in group_ids:
            errors.append(
                ValidationErrorRecord(
                    f"questionnaire.questions[{index}]",
                    "unknown_group_id",
                    f"Question '{question.question_id}' references unknown group "
                    f"'{question.group_id}'.",
                )
            )

    response_ids: set[str] = set()
    for index, response in enumerate(dataset.data.responses):
        if response.response_id in response_ids:
            errors.append(
                ValidationErrorRecord(
                    f"responses[{index}]",
                    "duplicate_response_id",
                    f"Duplicate response_id '{response.response_id}'.",
                )
            )
        response_ids.add(response.response_id)
        if response.question_id not in question_ids:
            errors.append(
                ValidationErrorRecord(
                    f"responses[{index}]",
                    "unknown_question_id",
                    f"Response '{response.response_id}' references unknown question "
                    f"'{response.question_id}'.",
                )
            )

    for index, consent in enumerate(dataset.consents):
        if consent.questionnaire_id != questionnaire.questionnaire_id:
            errors.append(
                ValidationErrorRecord(
                    f"consents[{index}]",
                    "foreign_consent",
                    f"Consent for user '{consent.user_id}' belongs to questionnaire "
                    f"'{consent.questionnaire_id}'.",
                )
            )
    return errors


def _parse_document(payload: dict[str, Any]) -> QuestionnaireDataset:
    questionnaire = Questionnaire.model_validate(payload.get("questionnaire"))
    responses = [RawResponse.model_validate(item) for item in payload.get("responses") or []]
    consents = [ConsentRecord.model_validate(item) for item in payload.get("consents") or []]
    return QuestionnaireDataset(
        data=QuestionnaireData(questionnaire=questionnaire, responses=responses),
        consents=consents,
    )


def load_questionnaire_dataset(path: str | Path) -> QuestionnaireDataset:
    """Load ``{questionnaire, responses, consents}`` from a JSON file.

    Raises on the first schema or integrity problem; use
    `validate_questionnaire_dataset` for a full report.
    """

    file_path = Path(path)
    payload = _read_document(file_path)
    try:
        dataset = _parse_document(payload)
    except PydanticValidationError as exc:
        raise QuestionnaireDatasetError(
            f"Dataset schema validation failed for {file_path}: {exc}"
        ) from exc

    errors = _integrity_errors(dataset)
    if errors:
        first = errors[0]
        raise QuestionnaireDatasetError(f"{file_path} {first.location}: {first.message}")
    return dataset


def validate_questionnaire_dataset(
    path: str | Path,
    *,
    max_errors: int = 100,
) -> DatasetValidationReport:
    """Check a dataset file and return a report instead of raising."""

    if max_errors < 0:
        raise ValueError(f"max_errors must be >= 0, got {max_errors}.")

    file_path = Path(path)
    errors: list[ValidationErrorRecord] = []
    dataset: QuestionnaireDataset | None = None
    try:
        dataset = _parse_document(_read_document(file_path))
    except QuestionnaireDatasetError as exc:
        errors.append(ValidationErrorRecord("$", "unreadable_dataset", str(exc)))
    except PydanticValidationError as exc:
        for item in exc.errors():
            location = ".".join(str(part) for part in item["loc"]) or "$"
            errors.append(ValidationErrorRecord(location, "schema_validation_failed", item["msg"]))

    if dataset is not None:
        errors.extend(_integrity_errors(dataset))
        if not dataset.data.responses:
            errors.append(ValidationErrorRecord("responses", "empty_dataset", "No responses."))
        summary = summarize_dataset(dataset)
    else:
        summary = DatasetSummary(0, 0, 0, 0, 0, 0)

    kept = errors[:max_errors]
    return DatasetValidationReport(
        schema_version=DATASET_SCHEMA_VERSION,
        input_path=str(file_path),
        questionnaire_id=dataset.questionnaire_id if dataset is not None else None,
        error_count=len(errors),
        dropped_error_count=len(errors) - len(kept),
        is_valid=not errors,
        summary=summary,
        errors=kept,
    )
