"""Fail-closed privacy gate run before any provider call."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from questionnaire_analysis.errors import ComplianceViolation, ValidationError
from questionnaire_analysis.pipeline.anonymization import (
    AnonymizationGate,
    AnonymizationLevel,
    ensure_k_anonymity,
    quasi_identifier_projection,
    verify_k_anonymity,
)
from questionnaire_analysis.schemas import QuestionnaireData, SanitizedResponse
from questionnaire_analysis.storage.base import ConsentRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ComplianceOutcome:
    """Sanitized responses cleared for analysis."""

    questionnaire_id: str
    sanitized: list[SanitizedResponse]
    k: int
    generalized: bool
    equivalence_class_count: int


class ComplianceGate:
    """Consent check, anonymization, and k-anonymity verification, in that order."""

    def __init__(
        self,
        *,
        anonymizer: AnonymizationGate,
        consent_registry: ConsentRegistry,
        consent_type: str = "research_analysis",
        k: int = 2,
        level: AnonymizationLevel = "full",
    ) -> None:
        if k < 2:
            raise ValueError(f"k must be at least 2, got {k}.")
        self._anonymizer = anonymizer
        self._consent_registry = consent_registry
        self._consent_type = consent_type
        self._k = k
        self._level = level

    def run(
        self,
        data: QuestionnaireData,
        *,
        level: AnonymizationLevel | None = None,
    ) -> ComplianceOutcome:
        questionnaire_id = data.questionnaire_id
        if not self._consent_registry.has_granted_consent(questionnaire_id, self._consent_type):
            raise ComplianceViolation(
                f"No granted '{self._consent_type}' consent for questionnaire {questionnaire_id}."
            )
        if not data.responses:
            raise ValidationError(f"Questionnaire {questionnaire_id} has no responses to analyze.")

        sanitized = self._anonymizer.anonymize_responses(data.responses, level or self._level)
        projections = [quasi_identifier_projection(item) for item in sanitized]
        generalized = False

        if not verify_k_anonymity(projections, self._k):
            projections = ensure_k_anonymity(projections, self._k)
            if not verify_k_anonymity(projections, self._k):
                raise ComplianceViolation(
                    f"Responses for questionnaire {questionnaire_id} do not satisfy "
                    f"{self._k}-anonymity after generalization."
                )
            generalized = True
            logger.info(
                "Generalized quasi-identifiers for questionnaire %s to reach %d-anonymity.",
                questionnaire_id,
                self._k,
            )
            sanitized = [
                _with_generalized_class(item, projection)
                for item, projection in zip(sanitized, projections, strict=True)
            ]

        return ComplianceOutcome(
            questionnaire_id=questionnaire_id,
            sanitized=sanitized,
            k=self._k,
            generalized=generalized,
            equivalence_class_count=len(set(projections)),
        )


def _with_generalized_class(response: SanitizedResponse, projection: str) -> SanitizedResponse:
    metadata = {
        key: value for key, value in response.metadata.items() if key != "quasi_identifiers"
    }
    metadata["quasi_identifier_class"] = projection
    return response.model_copy(update={"metadata": metadata})
