"""Jina embeddings client."""

from __future__ import annotations

from typing import Protocol

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random


class EmbeddingProvider(Protocol):
    """Anything that turns one text into a vector."""

    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""


class JinaEmbeddingClient:
    """Thin client around Jina's embeddings endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.jina.ai/v1/embeddings",
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._model = model
        self._base_url = base_url
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._http = httpx.Client(
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""

        self._http.close()

    def _is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return status == 429 or status >= 500
        return isinstance(exc, httpx.TransportError)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving input order."""

        if not texts:
            return []

        response: httpx.Response | None = None
        wait_strategy = wait_exponential(
            multiplier=self._backoff_seconds,
            min=self._backoff_seconds,
            max=max(self._backoff_seconds, self._backoff_seconds * 8),
        ) + wait_random(0.0, 0.25)
        retryer = Retrying(
            retry=retry_if_exception(self._is_retryable),
            wait=wait_strategy,
            stop=stop_after_attempt(max(0, self._max_retries) + 1),
            reraise=True,
        )
        for attempt in retryer:
            with attempt:
                response = self._http.post(
                    self._base_url,
                    json={"model": self._model, "input": texts},
                )
                response.raise_for_status()

        if response is None:
            raise ValueError("Jina embeddings response missing after retries.")

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ValueError("Embeddings response missing list field 'data'.")

        embeddings_by_index: dict[int, list[float]] = {}
        for item in data:
            if not isinstance(item, dict):
                raise ValueError("Embeddings response 'data' contains non-object entries.")
            index = item.get("index")
            embedding = item.get("embedding")
            if not isinstance(index, int) or not isinstance(embedding, list):
                raise ValueError("Embedding item needs an integer 'index' and a list 'embedding'.")
            embeddings_by_index[index] = [float(value) for value in embedding]

        if len(embeddings_by_index) != len(texts):
            raise ValueError(
                "Embeddings response count does not match input count: "
                f"{len(embeddings_by_index)} != {len(texts)}."
            )
        return [embeddings_by_index[idx] for idx in range(len(texts))]

    def embed(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]
