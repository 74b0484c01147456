"""I/O utilities for reading datasets and writing analysis outputs."""

from questionnaire_analysis.io.load import (
    DATASET_SCHEMA_VERSION,
    DatasetSummary,
    DatasetValidationReport,
    QuestionnaireDataset,
    QuestionnaireDatasetError,
    ValidationErrorRecord,
    load_questionnaire_dataset,
    summarize_dataset,
    validate_questionnaire_dataset,
)
from questionnaire_analysis.io.save import (
    append_jsonl,
    atomic_write_text,
    ensure_directory,
    read_jsonl,
    save_json,
)

__all__ = [
    "DATASET_SCHEMA_VERSION",
    "DatasetSummary",
    "DatasetValidationReport",
    "QuestionnaireDataset",
    "QuestionnaireDatasetError",
    "ValidationErrorRecord",
    "append_jsonl",
    "atomic_write_text",
    "ensure_directory",
    "load_questionnaire_dataset",
    "read_jsonl",
    "save_json",
    "summarize_dataset",
    "validate_questionnaire_dataset",
]
