"""Anthropic Messages API provider over httpx."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from questionnaire_analysis.models.base import (
    Completion,
    CompletionRequest,
    ProviderAuthError,
    ProviderCapabilities,
    ProviderError,
    ProviderRequestError,
    ProviderTransientError,
)

_TRANSIENT_STATUS_CODES = {408, 409, 425, 429, 529}


def classify_http_status(status_code: int, detail: str) -> ProviderError:
    """Map an HTTP error status onto the provider error taxonomy."""

    if status_code in (401, 403):
        return ProviderAuthError(f"HTTP {status_code}: {detail}")
    if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
        return ProviderTransientError(f"HTTP {status_code}: {detail}")
    return ProviderRequestError(f"HTTP {status_code}: {detail}")


class _AnthropicChunkStream:
    """Parses server-sent events from a streamed Messages response."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.prompt_tokens: int | None = None
        self.completion_tokens: int | None = None

    def _handle_event(self, event: dict[str, Any]) -> str | None:
        event_type = event.get("type")
        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            if "input_tokens" in usage:
                self.prompt_tokens = int(usage["input_tokens"])
        elif event_type == "message_delta":
            usage = event.get("usage") or {}
            if "output_tokens" in usage:
                self.completion_tokens = int(usage["output_tokens"])
        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return str(delta.get("text", ""))
        elif event_type == "error":
            error = event.get("error") or {}
            raise ProviderTransientError(
                f"Stream error {error.get('type', 'unknown')}: {error.get('message', '')}"
            )
        return None

    def __iter__(self) -> Iterator[str]:
        try:
            for line in self._response.iter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if not data:
                    continue
                try:
                    event = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise ProviderTransientError(f"Unreadable stream event: {data[:200]}") from exc
                text = self._handle_event(event)
                if text:
                    yield text
        except httpx.TransportError as exc:
            raise ProviderTransientError(str(exc)) from exc


class AnthropicMessagesProvider:
    """Single-shot and streamed completions against the Messages API."""

    name = "anthropic"
    capabilities = ProviderCapabilities(streaming=True, json_mode=False)

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        api_version: str = "2023-06-01",
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/v1/messages"
        self._http = httpx.Client(
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "x-api-key": api_key,
                "anthropic-version": api_version,
                "content-type": "application/json",
            },
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""

        self._http.close()

    def _body(self, request: CompletionRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if stream:
            body["stream"] = True
        return body

    def complete(self, request: CompletionRequest) -> Completion:
        try:
            response = self._http.post(self._url, json=self._body(request, stream=False))
        except httpx.TransportError as exc:
            raise ProviderTransientError(str(exc)) from exc
        if response.status_code >= 400:
            raise classify_http_status(response.status_code, response.text[:500])

        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderRequestError(f"Unexpected response type: {type(payload).__name__}")
        text = "".join(
            str(block.get("text", ""))
            for block in payload.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = payload.get("usage") or {}
        prompt_tokens = usage.get("input_tokens")
        completion_tokens = usage.get("output_tokens")
        total = (
            int(prompt_tokens) + int(completion_tokens)
            if prompt_tokens is not None and completion_tokens is not None
            else None
        )
        return Completion(
            text=text,
            model=str(payload.get("model") or request.model),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total,
        )

    @contextmanager
    def stream(self, request: CompletionRequest) -> Iterator[_AnthropicChunkStream]:
        try:
            with self._http.stream(
                "POST", self._url, json=self._body(request, stream=True)
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise classify_http_status(response.status_code, response.text[:500])
                yield _AnthropicChunkStream(response)
        except httpx.TransportError as exc:
            raise ProviderTransientError(str(exc)) from exc
