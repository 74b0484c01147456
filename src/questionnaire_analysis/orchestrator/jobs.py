"""Priority job queue, worker pool, and per-job analysis execution."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from questionnaire_analysis.cache import TTLCache
from questionnaire_analysis.concurrency import CancellationToken, SlidingWindowRateLimiter
from questionnaire_analysis.config import Settings
from questionnaire_analysis.errors import (
    JOB_SCOPE,
    AnalysisEngineError,
    Cancelled,
    ValidationError,
)
from questionnaire_analysis.orchestrator.events import EventBus, Subscriber
from questionnaire_analysis.pipeline.analysis import AnalysisEngine
from questionnaire_analysis.pipeline.anonymization import AnonymizationGate
from questionnaire_analysis.pipeline.base import AnalysisContext
from questionnaire_analysis.pipeline.compliance import ComplianceGate
from questionnaire_analysis.schemas import (
    AnalysisType,
    ChunkType,
    Job,
    JobSpec,
    JobStatus,
    QuestionnaireData,
    SanitizedResponse,
    StepOutcome,
    StreamEvent,
    utc_now,
)
from questionnaire_analysis.storage.base import (
    ConsentRegistry,
    JobStore,
    QuestionnaireRepository,
    ResultStore,
)
from questionnaire_analysis.storage.memory import (
    InMemoryConsentRegistry,
    InMemoryJobStore,
    InMemoryQuestionnaireRepository,
    InMemoryResultStore,
)

logger = logging.getLogger(__name__)

_STOP = float("inf")
ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


def _error_kind(error: BaseException) -> str:
    return error.kind if isinstance(error, AnalysisEngineError) else type(error).__name__


class JobOrchestrator:
    """Owns job records and drives each job through compliance and analysis.

    Jobs are dequeued by priority weight, FIFO within a weight. Within one job
    analysis types run sequentially in the order requested. Failures are
    recorded on the job and in events; nothing raised by a job escapes a
    worker.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        engine: AnalysisEngine | None = None,
        job_store: JobStore | None = None,
        result_store: ResultStore | None = None,
        questionnaire_repository: QuestionnaireRepository | None = None,
        consent_registry: ConsentRegistry | None = None,
        anonymizer: AnonymizationGate | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or Settings()
        self._engine = engine or AnalysisEngine.from_settings(self._settings)
        self._job_store = job_store or InMemoryJobStore()
        self._result_store = result_store or InMemoryResultStore()
        self._repository = questionnaire_repository or InMemoryQuestionnaireRepository()
        self._events = event_bus or EventBus(self._settings.event_history_size)
        anonymizer = anonymizer or AnonymizationGate(
            salt=self._settings.anonymization_salt or None,
            quasi_identifier_fields=self._settings.quasi_identifier_fields,
        )
        self._compliance = ComplianceGate(
            anonymizer=anonymizer,
            consent_registry=consent_registry or InMemoryConsentRegistry(),
            consent_type=self._settings.consent_type,
            k=self._settings.k_anonymity,
            level=self._settings.anonymization_level,
        )
        self._questionnaires: TTLCache[str, QuestionnaireData] = TTLCache(
            self._settings.questionnaire_cache_ttl_seconds, clock=clock
        )
        self._job_limiter = SlidingWindowRateLimiter(
            self._settings.job_rate_limit_calls,
            self._settings.job_rate_limit_window_seconds,
            name="jobs",
            clock=clock,
        )
        self._queue: queue.PriorityQueue[tuple[float, int, str | None]] = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.RLock()
        self._terminal = threading.Condition(self._lock)
        self._workers: list[threading.Thread] = []

    # Lifecycle

    def start(self) -> None:
        """Start the worker pool; calling it again while running is a no-op."""

        with self._lock:
            if any(worker.is_alive() for worker in self._workers):
                return
            self._workers = [
                threading.Thread(target=self._worker_loop, name=f"qae-worker-{index}", daemon=True)
                for index in range(self._settings.worker_count)
            ]
            for worker in self._workers:
                worker.start()
        logger.info("Started %d analysis workers.", len(self._workers))

    def shutdown(self, *, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop workers after the jobs already queued, or cancel those jobs first."""

        if cancel_pending:
            for job_id in self.list_active():
                self.cancel(job_id)
        workers = list(self._workers)
        for _ in workers:
            self._queue.put((_STOP, next(self._sequence), None))
        if wait:
            for worker in workers:
                worker.join()
        self._workers = []
        logger.info("Analysis workers stopped.")

    def _worker_loop(self) -> None:
        while True:
            _, _, job_id = self._queue.get()
            try:
                if job_id is None:
                    return
                self._run_dequeued(job_id)
            finally:
                self._queue.task_done()

    def process_next(self) -> str | None:
        """Run the next queued job on the calling thread; return its id, or None if idle."""

        try:
            _, _, job_id = self._queue.get_nowait()
        except queue.Empty:
            return None
        try:
            if job_id is not None:
                self._run_dequeued(job_id)
        finally:
            self._queue.task_done()
        return job_id

    def drain(self) -> list[str]:
        """Process queued jobs on the calling thread until the queue is empty."""

        processed: list[str] = []
        while (job_id := self.process_next()) is not None:
            processed.append(job_id)
        return processed

    # Public operations

    def submit(self, spec: JobSpec | dict[str, Any]) -> str:
        """Validate, persist, and enqueue a job; re-delivering a known job id is a no-op."""

        if not isinstance(spec, JobSpec):
            try:
                spec = JobSpec.model_validate(spec)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid job spec: {exc}") from exc

        job_id = spec.job_id or uuid.uuid4().hex
        with self._lock:
            if self._job_store.get_job(job_id) is not None:
                logger.info("Job %s already submitted; ignoring re-delivery.", job_id)
                return job_id
            job = Job(
                job_id=job_id,
                questionnaire_id=spec.questionnaire_id,
                analysis_types=list(spec.analysis_types),
                priority=spec.priority,
                priority_weight=spec.priority.weight,
                total_steps=len(spec.analysis_types),
                options=spec.options,
                triggered_by=spec.triggered_by,
            )
            self._job_store.create_job(job)
            self._queue.put((-job.priority_weight, next(self._sequence), job_id))

        logger.info(
            "Queued job %s for questionnaire %s (%s, priority=%s).",
            job_id,
            spec.questionnaire_id,
            ", ".join(spec.analysis_types),
            spec.priority,
        )
        self._publish(job_id, None, ChunkType.PROGRESS, {"status": JobStatus.QUEUED, "progress": 0})
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Cancel a job; False when it is unknown or already terminal."""

        cancelled: Job | None = None
        with self._lock:
            job = self._job_store.get_job(job_id)
            if job is None or job.is_terminal:
                return False
            token = self._tokens.get(job_id)
            if token is not None:
                token.cancel(f"Job {job_id} cancelled by request.")
            if job.status == JobStatus.QUEUED:
                cancelled = self._record_terminal(
                    job_id, JobStatus.CANCELLED, message="Cancelled before start."
                )
            elif token is None:
                return False
        if cancelled is not None:
            self._announce_terminal(cancelled)
            return True
        logger.info("Cancellation requested for running job %s.", job_id)
        return True

    def get_status(self, job_id: str) -> Job:
        job = self._job_store.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job id: {job_id}")
        return job

    def list_active(self) -> list[str]:
        return [job.job_id for job in self._job_store.list_jobs(statuses=ACTIVE_STATUSES)]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self._events.subscribe(callback)

    def events_for(self, job_id: str) -> list[StreamEvent]:
        return self._events.events_for(job_id)

    def wait_for(self, job_id: str, timeout: float | None = None) -> Job:
        """Block until the job is terminal or ``timeout`` elapses; return its latest state."""

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._terminal:
            while True:
                job = self.get_status(job_id)
                if job.is_terminal:
                    return job
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return job
                self._terminal.wait(remaining)

    # Execution

    def _run_dequeued(self, job_id: str) -> None:
        with self._lock:
            job = self._job_store.get_job(job_id)
            if job is None or job.status != JobStatus.QUEUED:
                logger.debug("Skipping dequeued job %s; it is no longer queued.", job_id)
                return
            token = CancellationToken()
            self._tokens[job_id] = token

        try:
            self._job_limiter.acquire(token)
        except Cancelled:
            with self._lock:
                self._tokens.pop(job_id, None)
            return

        with self._lock:
            job = self._job_store.get_job(job_id)
            if job is None or job.status != JobStatus.QUEUED:
                self._tokens.pop(job_id, None)
                return
            job = self._job_store.update_job_status(
                job_id, JobStatus.PROCESSING, 0, started_at=utc_now()
            )
        self._publish(job_id, None, ChunkType.PROGRESS, {"status": job.status, "progress": 0})

        try:
            self._execute(job, token)
        except Exception as exc:
            logger.exception("Job %s crashed.", job_id)
            self._terminate(job_id, JobStatus.FAILED, error=exc)

    def _load(self, questionnaire_id: str) -> QuestionnaireData:
        data = self._questionnaires.get_or_load(
            questionnaire_id, self._repository.load_questionnaire
        )
        if data is None:
            raise ValidationError(f"Questionnaire {questionnaire_id} not found.")
        return data

    def _execute(self, job: Job, token: CancellationToken) -> None:
        job_id = job.job_id
        try:
            data = self._load(job.questionnaire_id)
            compliance = self._compliance.run(data, level=job.options.anonymization_level)
        except AnalysisEngineError as exc:
            logger.warning("Job %s failed before analysis: %s", job_id, exc)
            self._terminate(job_id, JobStatus.FAILED, error=exc)
            return

        total = len(job.analysis_types)
        outcomes: dict[str, StepOutcome] = {}
        for attempted, analysis_type in enumerate(job.analysis_types, start=1):
            if token.cancelled:
                self._terminate(
                    job_id, JobStatus.CANCELLED, message=token.reason, outcomes=outcomes
                )
                return

            try:
                outcomes[analysis_type.value] = self._run_step(
                    job, analysis_type, data, compliance.sanitized, token
                )
            except Cancelled as exc:
                logger.info("Job %s cancelled during %s.", job_id, analysis_type)
                self._terminate(job_id, JobStatus.CANCELLED, message=str(exc), outcomes=outcomes)
                return
            except AnalysisEngineError as exc:
                outcomes[analysis_type.value] = StepOutcome.FAILED
                self._publish_step_error(job_id, analysis_type, exc)
                self._terminate(job_id, JobStatus.FAILED, error=exc, outcomes=outcomes)
                return

            progress = round(100 * attempted / total)
            self._job_store.update_job_status(
                job_id,
                JobStatus.PROCESSING,
                progress,
                completed_steps=attempted,
                step_outcomes=dict(outcomes),
            )
            self._publish(
                job_id,
                analysis_type,
                ChunkType.PROGRESS,
                {
                    "progress": progress,
                    "completed_steps": attempted,
                    "total_steps": total,
                    "outcome": outcomes[analysis_type.value],
                },
            )

        self._terminate(job_id, JobStatus.COMPLETED, progress=100, outcomes=outcomes)

    def _run_step(
        self,
        job: Job,
        analysis_type: AnalysisType,
        data: QuestionnaireData,
        sanitized: list[SanitizedResponse],
        token: CancellationToken,
    ) -> StepOutcome:
        """Run one analysis type; job-scoped errors and cancellation propagate."""

        job_id = job.job_id
        if self._result_store.has_result(job.questionnaire_id, analysis_type):
            logger.info(
                "Skipping %s for questionnaire %s; a result already exists.",
                analysis_type,
                job.questionnaire_id,
            )
            return StepOutcome.SKIPPED

        on_chunk = self._chunk_publisher(job_id, analysis_type) if job.options.stream else None
        context = AnalysisContext(
            questionnaire=data.questionnaire,
            options=job.options,
            job_id=job_id,
            cancel_token=token,
            on_chunk=on_chunk,
            prior_results=self._result_store.list_results(job.questionnaire_id),
        )
        try:
            result = self._engine.analyze(analysis_type, context, sanitized)
            token.raise_if_cancelled()
        except AnalysisEngineError as exc:
            if exc.scope == JOB_SCOPE:
                raise
            self._publish_step_error(job_id, analysis_type, exc)
            return StepOutcome.FAILED
        except Exception as exc:
            logger.exception("Unexpected failure in %s for job %s.", analysis_type, job_id)
            self._publish_step_error(job_id, analysis_type, exc)
            return StepOutcome.FAILED

        inserted = self._result_store.insert_analysis_result(result)
        self._publish(
            job_id,
            analysis_type,
            ChunkType.COMPLETE,
            {
                "result_id": result.result_id,
                "inserted": inserted,
                "confidence_score": result.metadata.confidence_score,
                "tokens_used": result.metadata.tokens_used,
                "cost_estimate": result.metadata.cost_estimate,
            },
        )
        return StepOutcome.COMPLETED

    def _terminate(
        self,
        job_id: str,
        status: JobStatus,
        *,
        progress: int = 0,
        error: BaseException | None = None,
        message: str | None = None,
        outcomes: dict[str, StepOutcome] | None = None,
    ) -> Job | None:
        with self._lock:
            updated = self._record_terminal(
                job_id, status, progress=progress, error=error, message=message, outcomes=outcomes
            )
        if updated is not None:
            self._announce_terminal(updated)
        return updated

    def _record_terminal(
        self,
        job_id: str,
        status: JobStatus,
        *,
        progress: int = 0,
        error: BaseException | None = None,
        message: str | None = None,
        outcomes: dict[str, StepOutcome] | None = None,
    ) -> Job | None:
        """Move a job to a terminal status. Callers hold the lock and publish afterwards."""

        error_kind = None
        if error is not None:
            error_kind = _error_kind(error)
            message = str(error) or error_kind
        changes: dict[str, Any] = {"completed_at": utc_now()}
        if outcomes is not None:
            changes["step_outcomes"] = dict(outcomes)

        job = self._job_store.get_job(job_id)
        if job is None or job.is_terminal:
            return None
        updated = self._job_store.update_job_status(
            job_id,
            status,
            progress,
            error_message=message if status != JobStatus.COMPLETED else None,
            error_kind=error_kind,
            **changes,
        )
        self._tokens.pop(job_id, None)
        self._terminal.notify_all()
        return updated

    def _announce_terminal(self, job: Job) -> None:
        logger.info("Job %s finished with status %s.", job.job_id, job.status)
        payload: dict[str, Any] = {
            "status": job.status,
            "progress": job.progress,
            "step_outcomes": dict(job.step_outcomes),
        }
        if job.error_kind is not None:
            payload["error_kind"] = job.error_kind
        if job.error_message:
            payload["message"] = job.error_message
        chunk_type = ChunkType.ERROR if job.status == JobStatus.FAILED else ChunkType.COMPLETE
        self._publish(job.job_id, None, chunk_type, payload)

    def _chunk_publisher(
        self, job_id: str, analysis_type: AnalysisType
    ) -> Callable[[str], None]:
        def publish_chunk(text: str) -> None:
            self._publish(job_id, analysis_type, ChunkType.CHUNK, {"text": text})

        return publish_chunk

    def _publish_step_error(
        self, job_id: str, analysis_type: AnalysisType, error: BaseException
    ) -> None:
        kind = _error_kind(error)
        logger.warning("%s failed for job %s: %s: %s", analysis_type, job_id, kind, error)
        self._publish(
            job_id, analysis_type, ChunkType.ERROR, {"error_kind": kind, "message": str(error)}
        )

    def _publish(
        self,
        job_id: str,
        analysis_type: AnalysisType | None,
        chunk_type: ChunkType,
        payload: dict[str, Any],
    ) -> None:
        self._events.publish(
            StreamEvent(
                job_id=job_id,
                analysis_type=analysis_type,
                chunk_type=chunk_type,
                payload=payload,
            )
        )
