"""Respondent clustering with embedding-based quality metrics."""

from __future__ import annotations

import logging

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from questionnaire_analysis.config import Settings
from questionnaire_analysis.errors import ConfigurationError, MalformedLLMOutput
from questionnaire_analysis.models import CompletionResult, ProviderAdapter
from questionnaire_analysis.pipeline.base import AnalysisContext, AnalysisOutcome, BaseAnalysis
from questionnaire_analysis.pipeline.embedding import CachedEmbedder
from questionnaire_analysis.pipeline.vector_math import (
    centroid,
    cohesion,
    inter_cluster_distance,
    nearest_centroid,
    silhouette,
)
from questionnaire_analysis.schemas import AnalysisType, ClusterResult, SanitizedResponse
from questionnaire_analysis.storage.base import VectorStore

logger = logging.getLogger(__name__)

SHORT_CIRCUIT_CLUSTER_ID = "cluster-all"


class _ClusterPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    members: list[str]
    sentiment: float = 0.0
    characteristics: list[str] = Field(default_factory=list)

    @field_validator("sentiment")
    @classmethod
    def _clamp_sentiment(cls, value: float) -> float:
        return max(-1.0, min(1.0, value))


class _ClustersPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    clusters: list[_ClusterPayload]
    summary: str = ""


def _candidates(responses: list[SanitizedResponse]) -> list[SanitizedResponse]:
    """Responses with non-empty text, first occurrence of each id only."""

    seen: set[str] = set()
    candidates: list[SanitizedResponse] = []
    for response in responses:
        if not response.text.strip() or response.id in seen:
            continue
        seen.add(response.id)
        candidates.append(response)
    return candidates


def _resolve_membership(
    proposed: list[_ClusterPayload],
    known_ids: list[str],
) -> tuple[list[tuple[_ClusterPayload, list[str]]], list[str], int]:
    """Drop unknown ids and duplicate assignments; return kept clusters and unassigned ids."""

    known = set(known_ids)
    assigned: set[str] = set()
    dropped = 0
    kept: list[tuple[_ClusterPayload, list[str]]] = []
    for cluster in proposed:
        members: list[str] = []
        for member in cluster.members:
            if member not in known or member in assigned:
                dropped += 1
                continue
            assigned.add(member)
            members.append(member)
        if members:
            kept.append((cluster, members))
    unassigned = [item for item in known_ids if item not in assigned]
    return kept, unassigned, dropped


class ClusteringAnalysis(BaseAnalysis):
    analysis_type = AnalysisType.CLUSTERS
    structural_field = "clusters"
    payload_model = _ClustersPayload

    def __init__(
        self,
        adapter: ProviderAdapter | None,
        settings: Settings,
        *,
        embedder: CachedEmbedder | None = None,
        vector_store: VectorStore | None = None,
    ) -> None:
        super().__init__(adapter, settings)
        self._embedder = embedder
        self._vector_store = vector_store

    def min_cluster_size(self, context: AnalysisContext) -> int:
        return context.options.min_cluster_size or self._settings.min_cluster_size

    @staticmethod
    def _require_known_member(payload: _ClustersPayload, known: set[str]) -> None:
        if not any(member in known for cluster in payload.clusters for member in cluster.members):
            raise MalformedLLMOutput("No proposed cluster contains a known response id.")

    def _short_circuit(self, candidates: list[SanitizedResponse], min_size: int) -> AnalysisOutcome:
        members = [response.id for response in candidates]
        clusters: list[dict] = []
        if members:
            clusters.append(
                ClusterResult(
                    cluster_id=SHORT_CIRCUIT_CLUSTER_ID,
                    name="All responses",
                    description="Too few responses to split into clusters.",
                    members=members,
                    size=len(members),
                    percentage=100.0,
                    centroid=[],
                    cohesion_score=1.0,
                    sentiment=0.0,
                ).model_dump()
            )
        return AnalysisOutcome(
            results={
                "clusters": clusters,
                "cluster_count": len(clusters),
                "silhouette_score": 0.0,
                "inter_cluster_distance": 0.0,
                "average_cohesion": 1.0,
                "reassigned_count": 0,
                "dropped_member_count": 0,
                "short_circuited": True,
                "min_cluster_size": min_size,
                "summary": "",
            },
            response_count=len(candidates),
        )

    def run(self, context: AnalysisContext, responses: list[SanitizedResponse]) -> AnalysisOutcome:
        candidates = _candidates(responses)
        min_size = self.min_cluster_size(context)
        if len(candidates) < 2 * min_size:
            logger.info(
                "Clustering short-circuited: %d candidates < 2 x min_cluster_size %d.",
                len(candidates),
                min_size,
            )
            return self._short_circuit(candidates, min_size)

        if self._embedder is None:
            raise ConfigurationError("Clustering requires an embedding provider.")

        candidate_ids = [response.id for response in candidates]
        selection = self.select(context)
        calls: list[CompletionResult] = []
        prompt = self.build_prompt(context, candidates, {"min_cluster_size": min_size})
        known_ids = set(candidate_ids)
        payload = self.complete_and_parse(
            context,
            prompt,
            selection,
            calls,
            check=lambda parsed: self._require_known_member(parsed, known_ids),
        )

        kept, unassigned, dropped = _resolve_membership(payload.clusters, candidate_ids)
        if dropped:
            logger.warning("Dropped %d unknown or duplicate cluster members.", dropped)

        if context.cancel_token is not None:
            context.cancel_token.raise_if_cancelled()
        matrix = self._embedder.embed_many([response.text for response in candidates])
        vectors = {item_id: matrix[index].tolist() for index, item_id in enumerate(candidate_ids)}

        member_lists = [list(members) for _, members in kept]
        if unassigned:
            centroids = [centroid([vectors[item] for item in members]) for members in member_lists]
            for item_id in unassigned:
                member_lists[nearest_centroid(vectors[item_id], centroids)].append(item_id)

        clusters: list[ClusterResult] = []
        labels: dict[str, str] = {}
        for index, ((proposal, _), members) in enumerate(zip(kept, member_lists, strict=True)):
            cluster_id = f"cluster-{index + 1}"
            member_vectors = [vectors[item] for item in members]
            for item in members:
                labels[item] = cluster_id
            clusters.append(
                ClusterResult(
                    cluster_id=cluster_id,
                    name=proposal.name.strip(),
                    description=proposal.description.strip(),
                    members=members,
                    size=len(members),
                    percentage=round(100.0 * len(members) / len(candidates), 2),
                    centroid=centroid(member_vectors),
                    cohesion_score=round(cohesion(member_vectors), 6),
                    sentiment=proposal.sentiment,
                    characteristics=proposal.characteristics,
                )
            )

        ordered_ids = [item for item in candidate_ids if item in labels]
        silhouette_score = silhouette(
            [vectors[item] for item in ordered_ids], [labels[item] for item in ordered_ids]
        )
        separation = inter_cluster_distance([cluster.centroid for cluster in clusters])

        if self._vector_store is not None:
            if context.cancel_token is not None:
                context.cancel_token.raise_if_cancelled()
            for item_id in candidate_ids:
                self._vector_store.upsert(
                    item_id,
                    vectors[item_id],
                    {"questionnaire_id": context.questionnaire_id, "cluster_id": labels[item_id]},
                )

        return AnalysisOutcome(
            results={
                "clusters": [cluster.model_dump() for cluster in clusters],
                "cluster_count": len(clusters),
                "silhouette_score": round(silhouette_score, 6),
                "inter_cluster_distance": round(separation, 6),
                "average_cohesion": round(
                    float(np.mean([cluster.cohesion_score for cluster in clusters])), 6
                ),
                "reassigned_count": len(unassigned),
                "dropped_member_count": dropped,
                "short_circuited": False,
                "min_cluster_size": min_size,
                "summary": payload.summary.strip(),
            },
            response_count=len(candidates),
            calls=calls,
            selection=selection,
        )
