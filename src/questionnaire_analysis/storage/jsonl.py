"""Result store persisted as an append-only JSONL file."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from questionnaire_analysis.io.save import append_jsonl, read_jsonl
from questionnaire_analysis.schemas import AnalysisResult, AnalysisType

logger = logging.getLogger(__name__)


class JsonlResultStore:
    """Durable result store; the first row for each (questionnaire, type) pair wins."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._results: dict[tuple[str, AnalysisType], AnalysisResult] = {}
        for row in read_jsonl(self._path):
            try:
                result = AnalysisResult.model_validate(row)
            except PydanticValidationError:
                logger.warning("Skipping unreadable result row in %s.", self._path)
                continue
            self._results.setdefault((result.questionnaire_id, result.analysis_type), result)

    @property
    def path(self) -> Path:
        return self._path

    def insert_analysis_result(self, result: AnalysisResult) -> bool:
        key = (result.questionnaire_id, AnalysisType(result.analysis_type))
        with self._lock:
            if key in self._results:
                return False
            append_jsonl(self._path, [result])
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
