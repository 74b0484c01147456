"""Core data schemas for the questionnaire analysis engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questionnaire_analysis.errors import InvalidTransitionError


def utc_now() -> datetime:
    return datetime.now(UTC)


class AnalysisType(StrEnum):
    THEMATIC = "thematic"
    CLUSTERS = "clusters"
    CONTRADICTIONS = "contradictions"
    INSIGHTS = "insights"
    RECOMMENDATIONS = "recommendations"


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


class ChunkType(StrEnum):
    CHUNK = "chunk"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class StepOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


PRIORITY_WEIGHTS: dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 5,
    Priority.HIGH: 10,
    Priority.URGENT: 20,
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise when moving a job from ``current`` to ``target`` is not allowed."""

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Job cannot move from {current} to {target}.")


class JobOptions(BaseModel):
    """Per-job overrides for model selection, token caps, and prompt shaping."""

    model_config = ConfigDict(extra="forbid")

    provider: Literal["auto", "openai", "anthropic"] = "auto"
    model: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_responses: int | None = Field(default=None, gt=0)
    min_cluster_size: int | None = Field(default=None, gt=0)
    anonymization_level: Literal["partial", "full"] | None = None
    language: Literal["en", "pl"] = "en"
    stream: bool = False
    context: dict[str, Any] = Field(default_factory=dict)


class JobSpec(BaseModel):
    """A request to analyze one questionnaire."""

    model_config = ConfigDict(extra="forbid")

    questionnaire_id: str = Field(min_length=1)
    analysis_types: list[AnalysisType] = Field(min_length=1)
    priority: Priority = Priority.MEDIUM
    options: JobOptions = Field(default_factory=JobOptions)
    triggered_by: str | None = None
    job_id: str | None = None

    @field_validator("analysis_types")
    @classmethod
    def _reject_duplicate_types(cls, value: list[AnalysisType]) -> list[AnalysisType]:
        seen: set[AnalysisType] = set()
        for item in value:
            if item in seen:
                raise ValueError(f"Duplicate analysis type: {item}.")
            seen.add(item)
        return value


class Job(BaseModel):
    """Orchestrator-owned job record."""

    job_id: str
    questionnaire_id: str
    analysis_types: list[AnalysisType]
    status: JobStatus = JobStatus.QUEUED
    priority: Priority = Priority.MEDIUM
    priority_weight: int = 5
    progress: int = Field(default=0, ge=0, le=100)
    total_steps: int = 0
    completed_steps: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    error_kind: str | None = None
    options: JobOptions = Field(default_factory=JobOptions)
    triggered_by: str | None = None
    step_outcomes: dict[str, StepOutcome] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AnalysisMetadata(BaseModel):
    """Provenance and cost details attached to every analysis result."""

    provider: str
    model: str
    prompt_version: str
    tokens_used: int = Field(default=0, ge=0)
    processing_time_ms: int = Field(default=0, ge=0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    response_count: int = Field(default=0, ge=0)
    cost_estimate: float = Field(default=0.0, ge=0.0)
    streamed: bool = False


class AnalysisResult(BaseModel):
    """Persisted outcome of one analysis type for one questionnaire."""

    result_id: str
    questionnaire_id: str
    analysis_type: AnalysisType
    job_id: str | None = None
    status: Literal["completed"] = "completed"
    results: dict[str, Any]
    metadata: AnalysisMetadata
    created_at: datetime = Field(default_factory=utc_now)


class QuestionGroup(BaseModel):
    group_id: str
    title: str = ""
    order_index: int = 0


class Question(BaseModel):
    question_id: str
    group_id: str
    text: str
    order_index: int = 0


class Questionnaire(BaseModel):
    """Questionnaire structure: ordered groups of questions."""

    questionnaire_id: str
    title: str = ""
    groups: list[QuestionGroup] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)

    def question_by_id(self) -> dict[str, Question]:
        return {question.question_id: question for question in self.questions}

    def ordered_groups(self) -> list[QuestionGroup]:
        return sorted(self.groups, key=lambda group: (group.order_index, group.group_id))


class RawResponse(BaseModel):
    """A respondent's answer exactly as collected, PII included."""

    response_id: str
    question_id: str
    user_id: str
    answer: str | int | float | bool | list[Any] | dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsentRecord(BaseModel):
    questionnaire_id: str
    user_id: str
    consent_type: str = "research_analysis"
    granted: bool = True


class QuestionnaireData(BaseModel):
    """A questionnaire bundled with its raw responses."""

    questionnaire: Questionnaire
    responses: list[RawResponse] = Field(default_factory=list)

    @property
    def questionnaire_id(self) -> str:
        return self.questionnaire.questionnaire_id


class DetectedPII(BaseModel):
    """Category and number of redacted spans. Matched values are never kept."""

    category: str
    count: int


class SanitizedResponse(BaseModel):
    """Anonymized view of a response; the only form that reaches providers."""

    model_config = ConfigDict(frozen=True)

    id: str
    question_id: str
    anonymous_user_id: str
    text: str
    answer: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    detected_pii: list[DetectedPII] = Field(default_factory=list)
    checksum: str
    level: Literal["partial", "full"] = "full"


class ClusterResult(BaseModel):
    """One cluster within a clustering analysis payload."""

    cluster_id: str
    name: str
    description: str = ""
    members: list[str]
    size: int
    percentage: float
    centroid: list[float] = Field(default_factory=list)
    cohesion_score: float
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    characteristics: list[str] = Field(default_factory=list)


class StreamEvent(BaseModel):
    """Event published to subscribers; ``analysis_type`` is None for job-level events."""

    job_id: str
    analysis_type: AnalysisType | None = None
    chunk_type: ChunkType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
