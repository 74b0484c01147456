"""OpenAI chat completions provider."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    OpenAI,
    PermissionDeniedError,
    RateLimitError,
)

from questionnaire_analysis.models.base import (
    Completion,
    CompletionRequest,
    ProviderAuthError,
    ProviderCapabilities,
    ProviderError,
    ProviderRequestError,
    ProviderTransientError,
)
from questionnaire_analysis.observability import maybe_wrap_openai_client


def classify_openai_error(exc: APIError) -> ProviderError:
    """Map an OpenAI SDK exception onto the provider error taxonomy."""

    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return ProviderAuthError(str(exc))
    if isinstance(exc, (RateLimitError, APITimeoutError, APIConnectionError)):
        return ProviderTransientError(str(exc))
    if isinstance(exc, APIStatusError):
        if exc.status_code >= 500:
            return ProviderTransientError(str(exc))
        return ProviderRequestError(str(exc))
    return ProviderTransientError(str(exc))


def _messages(request: CompletionRequest) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": request.system_prompt},
        {"role": "user", "content": request.prompt},
    ]


class _OpenAIChunkStream:
    def __init__(self, response) -> None:
        self._response = response
        self.prompt_tokens: int | None = None
        self.completion_tokens: int | None = None

    def __iter__(self) -> Iterator[str]:
        try:
            for event in self._response:
                usage = getattr(event, "usage", None)
                if usage is not None:
                    self.prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
                    self.completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
                for choice in getattr(event, "choices", None) or []:
                    content = getattr(choice.delta, "content", None)
                    if content:
                        yield content
        except APIError as exc:
            raise classify_openai_error(exc) from exc


class OpenAIChatProvider:
    """Chat completions with JSON mode and streamed usage reporting."""

    name = "openai"
    capabilities = ProviderCapabilities(streaming=True, json_mode=True)

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        client: OpenAI | None = None,
        tracing: bool = False,
    ) -> None:
        # Retries are owned by the adapter.
        base_client = client or OpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self._client, self._langsmith_wrapped = maybe_wrap_openai_client(
            base_client, enabled=tracing
        )

    def _create(self, request: CompletionRequest, **extra):
        kwargs = {
            "model": request.model,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "messages": _messages(request),
            **extra,
        }
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            return self._client.chat.completions.create(**kwargs)
        except APIError as exc:
            raise classify_openai_error(exc) from exc

    def complete(self, request: CompletionRequest) -> Completion:
        response = self._create(request)
        content = response.choices[0].message.content if response.choices else None
        usage = getattr(response, "usage", None)
        return Completion(
            text=content or "",
            model=getattr(response, "model", None) or request.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", None),
        )

    @contextmanager
    def stream(self, request: CompletionRequest) -> Iterator[_OpenAIChunkStream]:
        response = self._create(request, stream=True, stream_options={"include_usage": True})
        try:
            yield _OpenAIChunkStream(response)
        finally:
            response.close()
