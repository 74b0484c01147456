"""Job lifecycle, worker pool, and event stream."""

from questionnaire_analysis.orchestrator.events import EventBus
from questionnaire_analysis.orchestrator.jobs import JobOrchestrator

__all__ = ["EventBus", "JobOrchestrator"]
