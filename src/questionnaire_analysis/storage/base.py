"""Storage collaborator contracts consumed by the engine."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from questionnaire_analysis.schemas import (
    AnalysisResult,
    AnalysisType,
    Job,
    JobStatus,
    QuestionnaireData,
)


class JobStore(Protocol):
    """Persistence for job records."""

    def create_job(self, job: Job) -> str:
        """Persist a new job; re-creating an existing id returns it unchanged."""

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        *,
        error_message: str | None = None,
        error_kind: str | None = None,
        **changes: Any,
    ) -> Job:
        """Apply a status/progress change and return the updated job."""

    def get_job(self, job_id: str) -> Job | None:
        """Return a job by id."""

    def list_jobs(self, *, statuses: Iterable[JobStatus] | None = None) -> list[Job]:
        """Return jobs, optionally filtered by status."""


class ResultStore(Protocol):
    """Append-only persistence for analysis results."""

    def insert_analysis_result(self, result: AnalysisResult) -> bool:
        """Insert a result; return False when (questionnaire_id, analysis_type) already exists."""

    def has_result(self, questionnaire_id: str, analysis_type: AnalysisType) -> bool:
        """Return whether a result exists for the pair."""

    def get_result(
        self,
        questionnaire_id: str,
        analysis_type: AnalysisType,
    ) -> AnalysisResult | None:
        """Return the stored result for the pair."""

    def list_results(self, questionnaire_id: str | None = None) -> list[AnalysisResult]:
        """Return stored results in insertion order."""


class ConsentRegistry(Protocol):
    def has_granted_consent(self, questionnaire_id: str, consent_type: str) -> bool:
        """Return whether at least one granted consent of this type exists."""


class QuestionnaireRepository(Protocol):
    def load_questionnaire(self, questionnaire_id: str) -> QuestionnaireData | None:
        """Return the questionnaire and its raw responses, or None when unknown."""


@dataclass(frozen=True, slots=True)
class VectorMatch:
    """One search hit from a vector store."""

    item_id: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore(Protocol):
    """Pluggable vector index."""

    def upsert(
        self,
        item_id: str,
        vector: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or replace one vector."""

    def get(self, item_id: str) -> list[float] | None:
        """Return a stored vector."""

    def search(
        self,
        query: Sequence[float],
        *,
        limit: int = 10,
        threshold: float = 0.0,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return the most similar vectors, best first."""

    def delete(self, item_id: str) -> bool:
        """Remove one vector; return whether it existed."""

    def health_check(self) -> dict[str, Any]:
        """Return a small status payload."""
