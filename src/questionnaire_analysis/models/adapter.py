"""Retrying, rate-limited, cancellable front door to every LLM provider."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from questionnaire_analysis.concurrency import CancellationToken, SlidingWindowRateLimiter
from questionnaire_analysis.config import Settings
from questionnaire_analysis.errors import ConfigurationError, ProviderUnavailable
from questionnaire_analysis.models.anthropic_client import AnthropicMessagesProvider
from questionnaire_analysis.models.base import (
    Completion,
    CompletionRequest,
    LLMProvider,
    ProviderAuthError,
    ProviderError,
    ProviderRequestError,
    ProviderTransientError,
)
from questionnaire_analysis.models.openai_client import OpenAIChatProvider
from questionnaire_analysis.models.selection import (
    ProviderSelection,
    estimate_cost,
    estimate_tokens,
    split_total_tokens,
)
from questionnaire_analysis.schemas import JobOptions

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Completion text plus accounting for one adapter call."""

    text: str
    provider: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    tokens_used: int
    cost_estimate: float
    attempts: int
    streamed: bool
    duration_ms: int


def build_provider(name: str, settings: Settings) -> LLMProvider:
    """Construct a provider from settings; missing credentials are a configuration error."""

    api_key = settings.api_key_for(name)
    if name not in ("openai", "anthropic"):
        raise ConfigurationError(f"Unknown provider '{name}'.")
    if not api_key:
        raise ConfigurationError(
            f"Missing credentials for provider '{name}' ({settings.key_source_for(name)})."
        )
    if name == "openai":
        return OpenAIChatProvider(
            api_key=api_key,
            base_url=settings.resolved_openai_base_url() or None,
            timeout_seconds=settings.request_timeout_seconds,
            tracing=settings.langsmith_tracing,
        )
    return AnthropicMessagesProvider(
        api_key=api_key,
        base_url=settings.anthropic_base_url,
        api_version=settings.anthropic_version,
        timeout_seconds=settings.request_timeout_seconds,
    )


class ProviderAdapter:
    """Selects the provider variant, applies rate limits and retries, and accounts cost.

    Providers may be injected directly; any provider not injected is built
    lazily from ``settings`` on first use.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        providers: Mapping[str, LLMProvider] | None = None,
        provider_factory: Callable[[str, Settings], LLMProvider] = build_provider,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or Settings()
        self._providers: dict[str, LLMProvider] = dict(providers or {})
        self._provider_factory = provider_factory
        self._sleep = sleep
        self._limiters: dict[str, SlidingWindowRateLimiter] = {}
        self._lock = threading.Lock()
        self._metrics: dict[str, dict[str, float]] = {}

    def provider(self, name: str) -> LLMProvider:
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                provider = self._provider_factory(name, self._settings)
                self._providers[name] = provider
            return provider

    def _limiter(self, name: str) -> SlidingWindowRateLimiter:
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limiter = SlidingWindowRateLimiter(
                    self._settings.provider_rate_limit_calls,
                    self._settings.provider_rate_limit_window_seconds,
                    name=f"provider:{name}",
                    sleep=self._sleep,
                )
                self._limiters[name] = limiter
            return limiter

    def _record(self, provider: str, **increments: float) -> None:
        with self._lock:
            bucket = self._metrics.setdefault(
                provider,
                {
                    "request_count": 0,
                    "retry_count": 0,
                    "failure_count": 0,
                    "prompt_tokens": 0,
                    "completion_tokens": 0,
                    "cost_estimate": 0.0,
                },
            )
            for key, value in increments.items():
                bucket[key] += value

    def metrics_snapshot(self) -> dict[str, dict[str, float]]:
        """Return cumulative per-provider request, retry, token, and cost counters."""

        with self._lock:
            return {name: dict(values) for name, values in self._metrics.items()}

    def _stream_once(
        self,
        provider: LLMProvider,
        request: CompletionRequest,
        cancel_token: CancellationToken | None,
        on_chunk: ChunkCallback | None,
    ) -> Completion:
        parts: list[str] = []
        try:
            with provider.stream(request) as chunks:
                for chunk in chunks:
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    parts.append(chunk)
                    if on_chunk is not None:
                        on_chunk(chunk)
                prompt_tokens = chunks.prompt_tokens
                completion_tokens = chunks.completion_tokens
        except ProviderTransientError as exc:
            if parts:
                # Chunks already reached the caller; replaying would duplicate them.
                raise ProviderUnavailable(
                    f"{provider.name} stream broke after {len(parts)} chunks: {exc}"
                ) from exc
            raise
        return Completion(
            text="".join(parts),
            model=request.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    def call(
        self,
        prompt: str,
        *,
        system_prompt: str,
        selection: ProviderSelection,
        options: JobOptions | None = None,
        cancel_token: CancellationToken | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> CompletionResult:
        """Run one completion, streamed when requested and supported."""

        options = options or JobOptions()
        provider = self.provider(selection.provider)
        request = CompletionRequest(
            model=selection.model,
            system_prompt=system_prompt,
            prompt=prompt,
            max_tokens=options.max_tokens or self._settings.default_max_tokens,
            temperature=(
                options.temperature
                if options.temperature is not None
                else self._settings.default_temperature
            ),
            json_mode=provider.capabilities.json_mode,
        )
        use_stream = options.stream and provider.capabilities.streaming
        limiter = self._limiter(selection.provider)

        backoff = self._settings.client_backoff_seconds
        retryer = Retrying(
            retry=retry_if_exception_type(ProviderTransientError),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=max(backoff, backoff * 8))
            + wait_random(0.0, self._settings.client_backoff_jitter_seconds),
            stop=stop_after_attempt(max(0, self._settings.client_max_retries) + 1),
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        started = time.perf_counter()
        completion: Completion | None = None
        try:
            for attempt in retryer:
                with attempt:
                    attempts += 1
                    if attempts > 1:
                        logger.warning(
                            "Retrying %s call (attempt %d).", selection.provider, attempts
                        )
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    limiter.acquire(cancel_token)
                    if use_stream:
                        completion = self._stream_once(provider, request, cancel_token, on_chunk)
                    else:
                        completion = provider.complete(request)
        except ProviderAuthError as exc:
            self._record(selection.provider, failure_count=1, retry_count=max(0, attempts - 1))
            raise ConfigurationError(f"{selection.provider} rejected credentials: {exc}") from exc
        except (ProviderTransientError, ProviderRequestError) as exc:
            self._record(selection.provider, failure_count=1, retry_count=max(0, attempts - 1))
            raise ProviderUnavailable(
                f"{selection.provider} call failed after {attempts} attempt(s): {exc}"
            ) from exc
        except ProviderUnavailable:
            self._record(selection.provider, failure_count=1, retry_count=max(0, attempts - 1))
            raise
        except ProviderError as exc:
            self._record(selection.provider, failure_count=1, retry_count=max(0, attempts - 1))
            raise ProviderUnavailable(str(exc)) from exc

        if completion is None:
            raise ProviderUnavailable(f"{selection.provider} returned no completion.")

        prompt_tokens, completion_tokens = self._usage(completion, request)
        cost = estimate_cost(selection.provider, selection.model, prompt_tokens, completion_tokens)
        self._record(
            selection.provider,
            request_count=1,
            retry_count=attempts - 1,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_estimate=cost,
        )
        return CompletionResult(
            text=completion.text,
            provider=selection.provider,
            model=selection.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tokens_used=prompt_tokens + completion_tokens,
            cost_estimate=cost,
            attempts=attempts,
            streamed=use_stream,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    @staticmethod
    def _usage(completion: Completion, request: CompletionRequest) -> tuple[int, int]:
        if completion.prompt_tokens is not None and completion.completion_tokens is not None:
            return int(completion.prompt_tokens), int(completion.completion_tokens)
        if completion.total_tokens is not None:
            return split_total_tokens(int(completion.total_tokens))
        prompt_tokens = (
            int(completion.prompt_tokens)
            if completion.prompt_tokens is not None
            else estimate_tokens(request.system_prompt + request.prompt)
        )
        completion_tokens = (
            int(completion.completion_tokens)
            if completion.completion_tokens is not None
            else estimate_tokens(completion.text)
        )
        return prompt_tokens, completion_tokens
