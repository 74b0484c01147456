"""In-memory storage adapters used by tests and the local CLI."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from typing import Any

from questionnaire_analysis.errors import InvalidTransitionError
from questionnaire_analysis.pipeline.vector_math import cosine_similarity
from questionnaire_analysis.schemas import (
    AnalysisResult,
    AnalysisType,
    ConsentRecord,
    Job,
    JobStatus,
    QuestionnaireData,
    ensure_transition,
)
from questionnaire_analysis.storage.base import VectorMatch


class InMemoryJobStore:
    """Thread-safe job store enforcing the job state machine."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create_job(self, job: Job) -> str:
        with self._lock:
            if job.job_id not in self._jobs:
                self._jobs[job.job_id] = job.model_copy(deep=True)
        return job.job_id

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
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise KeyError(f"Unknown job id: {job_id}")
            if current.is_terminal:
                raise InvalidTransitionError(
                    f"Job {job_id} is {current.status} and can no longer change."
                )
            if status != current.status:
                ensure_transition(current.status, status)
            update: dict[str, Any] = {
                "status": status,
                "progress": max(current.progress, min(100, max(0, int(progress)))),
                **changes,
            }
            if error_message is not None:
                update["error_message"] = error_message
            if error_kind is not None:
                update["error_kind"] = error_kind
            updated = current.model_copy(update=update, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def list_jobs(self, *, statuses: Iterable[JobStatus] | None = None) -> list[Job]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if wanted is None or job.status in wanted
            ]


class InMemoryResultStore:
    """Append-only result store keyed by (questionnaire_id, analysis_type)."""

    def __init__(self) -> None:
        self._results: dict[tuple[str, AnalysisType], AnalysisResult] = {}
        self._lock = threading.Lock()

    def insert_analysis_result(self, result: AnalysisResult) -> bool:
        key = (result.questionnaire_id, AnalysisType(result.analysis_type))
        with self._lock:
            if key in self._results:
                return False
            self._results[key] = result
            return True

    def has_result(self, questionnaire_id: str, analysis_type: AnalysisType) -> bool:
        with self._lock:
            return (questionnaire_id, AnalysisType(analysis_type)) in self._results

    def get_result(
        self,
        questionnaire_id: str,
        analysis_type: AnalysisType,
    ) -> AnalysisResult | None:
        with self._lock:
            return self._results.get((questionnaire_id, AnalysisType(analysis_type)))

    def list_results(self, questionnaire_id: str | None = None) -> list[AnalysisResult]:
        with self._lock:
            return [
                result
                for result in self._results.values()
                if questionnaire_id is None or result.questionnaire_id == questionnaire_id
            ]


class InMemoryConsentRegistry:
    def __init__(self, records: Iterable[ConsentRecord] = ()) -> None:
        self._records: list[ConsentRecord] = list(records)
        self._lock = threading.Lock()

    def grant(self, record: ConsentRecord) -> None:
        with self._lock:
            self._records.append(record)

    def has_granted_consent(self, questionnaire_id: str, consent_type: str) -> bool:
        with self._lock:
            return any(
                record.granted
                and record.questionnaire_id == questionnaire_id
                and record.consent_type == consent_type
                for record in self._records
            )


class InMemoryQuestionnaireRepository:
    def __init__(self, datasets: Iterable[QuestionnaireData] = ()) -> None:
        self._datasets: dict[str, QuestionnaireData] = {}
        self.load_count = 0
        for dataset in datasets:
            self.add(dataset)

    def add(self, dataset: QuestionnaireData) -> None:
        self._datasets[dataset.questionnaire_id] = dataset

    def load_questionnaire(self, questionnaire_id: str) -> QuestionnaireData | None:
        self.load_count += 1
        return self._datasets.get(questionnaire_id)


class InMemoryVectorStore:
    """Linear-scan vector store."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        item_id: str,
        vector: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            self._vectors[item_id] = [float(value) for value in vector]
            self._metadata[item_id] = dict(metadata or {})

    def get(self, item_id: str) -> list[float] | None:
        with self._lock:
            vector = self._vectors.get(item_id)
            return list(vector) if vector is not None else None

    def search(
        self,
        query: Sequence[float],
        *,
        limit: int = 10,
        threshold: float = 0.0,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        if limit <= 0:
            return []
        with self._lock:
            items = list(self._vectors.items())
            metadata = dict(self._metadata)

        matches: list[VectorMatch] = []
        for item_id, vector in items:
            item_metadata = metadata.get(item_id, {})
            if filters and any(item_metadata.get(key) != value for key, value in filters.items()):
                continue
            similarity = cosine_similarity(query, vector)
            if similarity >= threshold:
                matches.append(VectorMatch(item_id, similarity, dict(item_metadata)))
        matches.sort(key=lambda match: (-match.similarity, match.item_id))
        return matches[:limit]

    def delete(self, item_id: str) -> bool:
        with self._lock:
            self._metadata.pop(item_id, None)
            return self._vectors.pop(item_id, None) is not None

    def health_check(self) -> dict[str, Any]:
        with self._lock:
            count = len(self._vectors)
        return {"status": "ok", "backend": "memory", "vector_count": count}
