"""Privacy gate, vector math, and the per-type analysis implementations."""

from questionnaire_analysis.pipeline.analysis import AnalysisEngine
from questionnaire_analysis.pipeline.anonymization import (
    AnonymizationGate,
    AnonymizationResult,
    anonymize_text,
    ensure_k_anonymity,
    pii_detection_report,
    validate_anonymization,
    verify_k_anonymity,
)
from questionnaire_analysis.pipeline.base import (
    AnalysisContext,
    AnalysisOutcome,
    BaseAnalysis,
    confidence_score,
    parse_llm_json,
)
from questionnaire_analysis.pipeline.clustering import ClusteringAnalysis
from questionnaire_analysis.pipeline.compliance import ComplianceGate, ComplianceOutcome
from questionnaire_analysis.pipeline.contradictions import ContradictionAnalysis
from questionnaire_analysis.pipeline.embedding import CachedEmbedder, EmbeddingExtractionError
from questionnaire_analysis.pipeline.insights import InsightsAnalysis
from questionnaire_analysis.pipeline.recommendations import RecommendationsAnalysis
from questionnaire_analysis.pipeline.thematic import ThematicAnalysis

__all__ = [
    "AnalysisContext",
    "AnalysisEngine",
    "AnalysisOutcome",
    "AnonymizationGate",
    "AnonymizationResult",
    "BaseAnalysis",
    "CachedEmbedder",
    "ClusteringAnalysis",
    "ComplianceGate",
    "ComplianceOutcome",
    "ContradictionAnalysis",
    "EmbeddingExtractionError",
    "InsightsAnalysis",
    "RecommendationsAnalysis",
    "ThematicAnalysis",
    "anonymize_text",
    "confidence_score",
    "ensure_k_anonymity",
    "parse_llm_json",
    "pii_detection_report",
    "validate_anonymization",
    "verify_k_anonymity",
]
