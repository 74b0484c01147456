"""Error taxonomy shared across the engine.

Every error carries a ``scope``: ``job`` errors fail the whole job, ``type``
errors are recorded against one analysis type while the job keeps going.
"""

from __future__ import annotations

JOB_SCOPE = "job"
TYPE_SCOPE = "type"


class AnalysisEngineError(Exception):
    """Base class for engine errors."""

    scope = TYPE_SCOPE

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigurationError(AnalysisEngineError):
    """Raised when credentials or required settings are missing."""

    scope = JOB_SCOPE


class ComplianceViolation(AnalysisEngineError):
    """Raised when consent or k-anonymity checks fail before any provider call."""

    scope = JOB_SCOPE


class ProviderUnavailable(AnalysisEngineError):
    """Raised when a provider call fails after retries are exhausted."""


class MalformedLLMOutput(AnalysisEngineError, ValueError):
    """Raised when provider output is unparsable or misses required fields."""


class ValidationError(AnalysisEngineError, ValueError):
    """Raised when analysis input or a job spec is malformed."""


class Cancelled(AnalysisEngineError):
    """Raised when a cooperative cancellation signal is observed."""

    scope = JOB_SCOPE


class InvalidTransitionError(AnalysisEngineError, ValueError):
    """Raised when a job status change is not allowed by the state machine."""

    scope = JOB_SCOPE
