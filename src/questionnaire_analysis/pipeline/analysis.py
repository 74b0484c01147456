"""Dispatch from analysis type to its implementation."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from questionnaire_analysis.config import Settings
from questionnaire_analysis.models import JinaEmbeddingClient, ProviderAdapter
from questionnaire_analysis.pipeline.base import AnalysisContext, BaseAnalysis
from questionnaire_analysis.pipeline.clustering import ClusteringAnalysis
from questionnaire_analysis.pipeline.contradictions import ContradictionAnalysis
from questionnaire_analysis.pipeline.embedding import CachedEmbedder
from questionnaire_analysis.pipeline.insights import InsightsAnalysis
from questionnaire_analysis.pipeline.recommendations import RecommendationsAnalysis
from questionnaire_analysis.pipeline.thematic import ThematicAnalysis
from questionnaire_analysis.schemas import AnalysisResult, AnalysisType, SanitizedResponse
from questionnaire_analysis.storage.base import VectorStore

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Holds one instance of every analysis type and routes calls to them."""

    def __init__(
        self,
        adapter: ProviderAdapter | None,
        *,
        settings: Settings | None = None,
        embedder: CachedEmbedder | None = None,
        vector_store: VectorStore | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._adapter = adapter
        self._analyses: dict[AnalysisType, BaseAnalysis] = {
            AnalysisType.THEMATIC: ThematicAnalysis(adapter, self._settings),
            AnalysisType.CLUSTERS: ClusteringAnalysis(
                adapter, self._settings, embedder=embedder, vector_store=vector_store
            ),
            AnalysisType.CONTRADICTIONS: ContradictionAnalysis(adapter, self._settings),
            AnalysisType.INSIGHTS: InsightsAnalysis(adapter, self._settings),
            AnalysisType.RECOMMENDATIONS: RecommendationsAnalysis(adapter, self._settings),
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        vector_store: VectorStore | None = None,
    ) -> AnalysisEngine:
        """Build an engine with real providers; embeddings are enabled only with a Jina key."""

        embedder: CachedEmbedder | None = None
        jina_key = settings.api_key_for("jina")
        if jina_key:
            embedder = CachedEmbedder(
                JinaEmbeddingClient(
                    api_key=jina_key,
                    model=settings.embedding_model,
                    base_url=settings.jina_base_url,
                    max_retries=settings.client_max_retries,
                    backoff_seconds=settings.client_backoff_seconds,
                ),
                ttl_seconds=settings.embedding_cache_ttl_seconds,
            )
        else:
            logger.info("JINA_API_KEY not set; clustering beyond the short-circuit is disabled.")
        return cls(
            ProviderAdapter(settings=settings),
            settings=settings,
            embedder=embedder,
            vector_store=vector_store,
        )

    @property
    def adapter(self) -> ProviderAdapter | None:
        return self._adapter

    def analysis_for(self, analysis_type: AnalysisType | str) -> BaseAnalysis:
        try:
            return self._analyses[AnalysisType(analysis_type)]
        except ValueError as exc:
            raise KeyError(f"Unknown analysis type: {analysis_type!r}.") from exc

    def analyze(
        self,
        analysis_type: AnalysisType | str,
        context: AnalysisContext,
        responses: Sequence[SanitizedResponse],
    ) -> AnalysisResult:
        analysis = self.analysis_for(analysis_type)
        logger.info(
            "Running %s analysis for questionnaire %s (%d responses).",
            analysis.analysis_type,
            context.questionnaire_id,
            len(responses),
        )
        return analysis.analyze(context, responses)
