"""Storage contracts and adapters."""

from questionnaire_analysis.storage.base import (
    ConsentRegistry,
    JobStore,
    QuestionnaireRepository,
    ResultStore,
    VectorMatch,
    VectorStore,
)
from questionnaire_analysis.storage.jsonl import JsonlResultStore
from questionnaire_analysis.storage.memory import (
    InMemoryConsentRegistry,
    InMemoryJobStore,
    InMemoryQuestionnaireRepository,
    InMemoryResultStore,
    InMemoryVectorStore,
)

__all__ = [
    "ConsentRegistry",
    "InMemoryConsentRegistry",
    "InMemoryJobStore",
    "InMemoryQuestionnaireRepository",
    "InMemoryResultStore",
    "InMemoryVectorStore",
    "JobStore",
    "JsonlResultStore",
    "QuestionnaireRepository",
    "ResultStore",
    "VectorMatch",
    "VectorStore",
]
