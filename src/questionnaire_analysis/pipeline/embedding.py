"""Content-addressed embedding cache used by clustering."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Sequence

import numpy as np

from questionnaire_analysis.cache import TTLCache
from questionnaire_analysis.models import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingExtractionError(ValueError):
    """Raised when text embeddings are missing or malformed."""


def text_key(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class CachedEmbedder:
    """Wraps an embedding provider with a TTL cache keyed by the SHA-256 of the text.

    Keys are derived from content, so edited response text always misses the
    cache and stale vectors can only be served for unchanged text.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        ttl_seconds: float = 86400.0,
        max_entries: int | None = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._cache: TTLCache[str, list[float]] = TTLCache(
            ttl_seconds, max_entries=max_entries, clock=clock
        )

    @property
    def cache(self) -> TTLCache[str, list[float]]:
        return self._cache

    def embed(self, text: str) -> list[float]:
        key = text_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        vector = [float(value) for value in self._provider.embed(text)]
        if not vector:
            raise EmbeddingExtractionError("Embedding provider returned an empty vector.")
        self._cache.set(key, vector)
        return vector

    def embed_many(
        self,
        texts: Sequence[str],
        *,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> np.ndarray:
        """Embed texts in order and return a 2D array."""

        if not texts:
            raise EmbeddingExtractionError("Cannot embed an empty text list.")

        result: np.ndarray | None = None
        for index, text in enumerate(texts):
            vector = self.embed(text)
            if result is None:
                result = np.empty((len(texts), len(vector)), dtype=float)
            elif len(vector) != result.shape[1]:
                raise EmbeddingExtractionError(
                    "Inconsistent embedding dimensions: "
                    f"expected {result.shape[1]}, got {len(vector)}."
                )
            result[index] = vector
            if progress_callback is not None:
                progress_callback(index + 1, len(texts))

        if result is None:
            raise EmbeddingExtractionError("No embeddings produced.")
        logger.debug(
            "Embedded %d texts (cache hits=%d, misses=%d).",
            len(texts),
            self._cache.hits,
            self._cache.misses,
        )
        return result
