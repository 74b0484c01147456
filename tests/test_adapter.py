"""Tests for the provider adapter: retries, streaming, cancellation, and accounting."""

from __future__ import annotations

import pytest
from conftest import FakeProvider

from questionnaire_analysis.concurrency import CancellationToken
from questionnaire_analysis.config import Settings
from questionnaire_analysis.errors import Cancelled, ConfigurationError, ProviderUnavailable
from questionnaire_analysis.models import (
    ProviderAdapter,
    ProviderAuthError,
    ProviderRequestError,
    ProviderSelection,
    ProviderTransientError,
    build_provider,
)
from questionnaire_analysis.schemas import JobOptions

SELECTION = ProviderSelection(provider="openai", model="gpt-4o-mini", tier="fast")


def _adapter(settings: Settings, provider: FakeProvider) -> ProviderAdapter:
    return ProviderAdapter(settings=settings, providers={"openai": provider}, sleep=lambda _: None)


def _scripted(*replies):
    remaining = list(replies)

    def responder(request):
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return responder


class TestRetries:
    def test_transient_errors_are_retried(self, settings):
        provider = FakeProvider(_scripted(ProviderTransientError("503"), '{"ok": true}'))
        result = _adapter(settings, provider).call("p", system_prompt="s", selection=SELECTION)

        assert result.text == '{"ok": true}'
        assert result.attempts == 2
        assert len(provider.requests) == 2

    def test_exhausted_retries_raise_provider_unavailable(self, settings):
        provider = FakeProvider(_scripted(ProviderTransientError("timeout")))
        adapter = _adapter(settings, provider)

        with pytest.raises(ProviderUnavailable):
            adapter.call("p", system_prompt="s", selection=SELECTION)
        assert len(provider.requests) == settings.client_max_retries + 1
        metrics = adapter.metrics_snapshot()["openai"]
        assert metrics["failure_count"] == 1
        assert metrics["retry_count"] == settings.client_max_retries

    @pytest.mark.parametrize("retries", [0, 1, 4])
    def test_retry_setting_counts_calls_after_the_first(self, settings, retries):
        settings.client_max_retries = retries
        provider = FakeProvider(_scripted(ProviderTransientError("timeout")))

        with pytest.raises(ProviderUnavailable):
            _adapter(settings, provider).call("p", system_prompt="s", selection=SELECTION)
        assert len(provider.requests) == retries + 1

    def test_request_errors_are_not_retried(self, settings):
        provider = FakeProvider(_scripted(ProviderRequestError("400 bad request")))
        with pytest.raises(ProviderUnavailable):
            _adapter(settings, provider).call("p", system_prompt="s", selection=SELECTION)
        assert len(provider.requests) == 1

    def test_auth_errors_are_configuration_errors(self, settings):
        provider = FakeProvider(_scripted(ProviderAuthError("401")))
        with pytest.raises(ConfigurationError):
            _adapter(settings, provider).call("p", system_prompt="s", selection=SELECTION)
        assert len(provider.requests) == 1


def test_missing_credentials_fail_before_any_call():
    settings = Settings(openai_api_key="", anthropic_api_key="")
    with pytest.raises(ConfigurationError):
        build_provider("openai", settings)
    with pytest.raises(ConfigurationError):
        build_provider("mistral", settings)

    adapter = ProviderAdapter(settings=settings, sleep=lambda _: None)
    with pytest.raises(ConfigurationError):
        adapter.call("p", system_prompt="s", selection=SELECTION)


class TestStreaming:
    def test_chunks_arrive_in_order_and_join_to_text(self, settings):
        provider = FakeProvider(_scripted("abcdefghij"), chunk_size=3)
        chunks: list[str] = []
        result = _adapter(settings, provider).call(
            "p",
            system_prompt="s",
            selection=SELECTION,
            options=JobOptions(stream=True),
            on_chunk=chunks.append,
        )

        assert chunks == ["abc", "def", "ghi", "j"]
        assert result.text == "abcdefghij"
        assert result.streamed is True

    def test_provider_without_streaming_falls_back_to_complete(self, settings):
        provider = FakeProvider(_scripted("whole"), streaming=False)
        chunks: list[str] = []
        result = _adapter(settings, provider).call(
            "p",
            system_prompt="s",
            selection=SELECTION,
            options=JobOptions(stream=True),
            on_chunk=chunks.append,
        )
        assert result.text == "whole"
        assert result.streamed is False
        assert chunks == []

    def test_cancel_mid_stream_raises_cancelled(self, settings):
        provider = FakeProvider(_scripted("abcdefghij"), chunk_size=2)
        token = CancellationToken()
        seen: list[str] = []

        def on_chunk(chunk: str) -> None:
            seen.append(chunk)
            if len(seen) == 2:
                token.cancel()

        with pytest.raises(Cancelled):
            _adapter(settings, provider).call(
                "p",
                system_prompt="s",
                selection=SELECTION,
                options=JobOptions(stream=True),
                cancel_token=token,
                on_chunk=on_chunk,
            )
        assert seen == ["ab", "cd"]
        assert len(provider.requests) == 1

    def test_stream_broken_after_chunks_is_not_replayed(self, settings):
        provider = FakeProvider(
            _scripted("abcdef"), chunk_size=2, stream_failure=(1, ProviderTransientError("reset"))
        )
        seen: list[str] = []
        with pytest.raises(ProviderUnavailable):
            _adapter(settings, provider).call(
                "p",
                system_prompt="s",
                selection=SELECTION,
                options=JobOptions(stream=True),
                on_chunk=seen.append,
            )
        assert seen == ["ab"]
        assert len(provider.requests) == 1

    def test_stream_broken_before_any_chunk_is_retried(self, settings):
        provider = FakeProvider(
            _scripted("abcdef"), chunk_size=2, stream_failure=(0, ProviderTransientError("reset"))
        )
        with pytest.raises(ProviderUnavailable):
            _adapter(settings, provider).call(
                "p", system_prompt="s", selection=SELECTION, options=JobOptions(stream=True)
            )
        assert len(provider.requests) == settings.client_max_retries + 1


def test_cancelled_before_call_makes_no_request(settings, provider):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        _adapter(settings, provider).call(
            "p", system_prompt="s", selection=SELECTION, cancel_token=token
        )
    assert provider.requests == []


class TestUsage:
    def test_reported_usage_drives_cost(self, settings):
        provider = FakeProvider(_scripted("{}"), usage=(1000, 1000))
        result = _adapter(settings, provider).call("p", system_prompt="s", selection=SELECTION)
        assert result.prompt_tokens == 1000
        assert result.completion_tokens == 1000
        assert result.tokens_used == 2000
        assert result.cost_estimate == pytest.approx(0.00075)

    def test_missing_usage_is_estimated_from_text(self, settings):
        provider = FakeProvider(_scripted("x" * 40), usage=(None, None))
        result = _adapter(settings, provider).call(
            "p" * 16, system_prompt="s" * 4, selection=SELECTION
        )
        assert result.prompt_tokens == 5
        assert result.completion_tokens == 10

    def test_metrics_accumulate_per_provider(self, settings):
        provider = FakeProvider(_scripted("{}"), usage=(10, 5))
        adapter = _adapter(settings, provider)
        for _ in range(3):
            adapter.call("p", system_prompt="s", selection=SELECTION)
        metrics = adapter.metrics_snapshot()["openai"]
        assert metrics["request_count"] == 3
        assert metrics["prompt_tokens"] == 30
        assert metrics["completion_tokens"] == 15


def test_request_uses_option_overrides(settings):
    provider = FakeProvider(_scripted("{}"))
    _adapter(settings, provider).call(
        "p",
        system_prompt="s",
        selection=SELECTION,
        options=JobOptions(max_tokens=123, temperature=0.9),
    )
    request = provider.requests[0]
    assert request.max_tokens == 123
    assert request.temperature == 0.9
    assert request.model == "gpt-4o-mini"
    assert request.json_mode is True
