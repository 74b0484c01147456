"""Vector similarity helpers used to score clustering quality."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine

Vector = Sequence[float]


def _as_array(vector: Vector) -> np.ndarray:
    return np.asarray(vector, dtype=float).reshape(-1)


def cosine_similarity(left: Vector, right: Vector) -> float:
    """Return cosine similarity in [-1, 1]; 0.0 for empty, zero, or mismatched vectors."""

    a = _as_array(left)
    b = _as_array(right)
    if a.size == 0 or a.shape != b.shape:
        return 0.0
    norm_product = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm_product == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm_product, -1.0, 1.0))


def cosine_distance(left: Vector, right: Vector) -> float:
    return max(0.0, 1.0 - cosine_similarity(left, right))


def centroid(vectors: Sequence[Vector]) -> list[float]:
    """Componentwise mean of member vectors; empty input gives an empty centroid."""

    if not vectors:
        return []
    matrix = np.asarray([_as_array(vector) for vector in vectors], dtype=float)
    if matrix.ndim != 2:
        raise ValueError("All vectors must share the same dimension.")
    return np.mean(matrix, axis=0).tolist()


def similarity_matrix(vectors: Sequence[Vector]) -> np.ndarray:
    """Pairwise cosine similarity matrix, clipped to [-1, 1]."""

    if not vectors:
        return np.zeros((0, 0), dtype=float)
    matrix = np.asarray([_as_array(vector) for vector in vectors], dtype=float)
    if matrix.ndim != 2:
        raise ValueError("All vectors must share the same dimension.")
    return np.clip(_pairwise_cosine(matrix), -1.0, 1.0)


def cohesion(vectors: Sequence[Vector]) -> float:
    """Mean pairwise cosine similarity of a cluster's members (1.0 below two members)."""

    if len(vectors) < 2:
        return 1.0
    similarities = similarity_matrix(vectors)
    upper = similarities[np.triu_indices(len(vectors), k=1)]
    return float(np.mean(upper))


def silhouette_samples(vectors: Sequence[Vector], labels: Sequence[str | int]) -> list[float]:
    """Per-point silhouette using cosine distance.

    ``a`` is the mean distance to other members of the point's own cluster
    (0 when it has none); ``b`` is the smallest mean distance to any other
    non-empty cluster. A point with no other cluster to compare against
    scores 0.
    """

    if len(vectors) != len(labels):
        raise ValueError(f"Got {len(vectors)} vectors but {len(labels)} labels.")
    if not vectors:
        return []

    distances = np.clip(1.0 - similarity_matrix(vectors), 0.0, 2.0)
    label_array = np.asarray([str(label) for label in labels])
    unique_labels = sorted(set(label_array.tolist()))

    scores: list[float] = []
    for index, own_label in enumerate(label_array.tolist()):
        same_mask = label_array == own_label
        same_mask[index] = False
        a = float(np.mean(distances[index, same_mask])) if np.any(same_mask) else 0.0

        b = float("inf")
        for other_label in unique_labels:
            if other_label == own_label:
                continue
            other_mask = label_array == other_label
            b = min(b, float(np.mean(distances[index, other_mask])))

        if b == float("inf"):
            scores.append(0.0)
            continue
        denominator = max(a, b)
        scores.append(0.0 if denominator == 0.0 else (b - a) / denominator)
    return scores


def silhouette(vectors: Sequence[Vector], labels: Sequence[str | int]) -> float:
    """Mean silhouette over all points; 0.0 when fewer than two clusters exist."""

    if len({str(label) for label in labels}) < 2:
        return 0.0
    samples = silhouette_samples(vectors, labels)
    return float(np.clip(np.mean(samples), -1.0, 1.0)) if samples else 0.0


def inter_cluster_distance(centroids: Sequence[Vector]) -> float:
    """Mean over centroid pairs of (1 - cosine similarity); 0.0 below two centroids."""

    if len(centroids) < 2:
        return 0.0
    total = 0.0
    pairs = 0
    for i in range(len(centroids)):
        for j in range(i + 1, len(centroids)):
            total += 1.0 - cosine_similarity(centroids[i], centroids[j])
            pairs += 1
    return total / pairs


def nearest_centroid(vector: Vector, centroids: Sequence[Vector]) -> int:
    """Index of the centroid most similar to ``vector``; -1 when there are none."""

    best_index = -1
    best_similarity = -float("inf")
    for index, candidate in enumerate(centroids):
        similarity = cosine_similarity(vector, candidate)
        if similarity > best_similarity:
            best_index = index
            best_similarity = similarity
    return best_index
