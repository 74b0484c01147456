"""Provider-neutral completion contract."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Protocol


class ProviderError(Exception):
    """Base class for errors raised by provider variants."""


class ProviderTransientError(ProviderError):
    """Network failure, timeout, rate limit, or server error worth retrying."""


class ProviderAuthError(ProviderError):
    """Credentials were rejected (HTTP 401/403)."""


class ProviderRequestError(ProviderError):
    """The provider refused the request for a reason retrying will not fix."""


@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    streaming: bool
    json_mode: bool


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    model: str
    system_prompt: str
    prompt: str
    max_tokens: int = 2000
    temperature: float = 0.3
    json_mode: bool = True


@dataclass(frozen=True, slots=True)
class Completion:
    """Raw provider output; token counts are None when the provider does not report them."""

    text: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChunkStream(Protocol):
    """Iterable of text chunks in receipt order; usage is filled in once iteration ends."""

    prompt_tokens: int | None
    completion_tokens: int | None

    def __iter__(self) -> Iterator[str]:
        """Yield text chunks."""


class LLMProvider(Protocol):
    """A concrete LLM backend."""

    name: str
    capabilities: ProviderCapabilities

    def complete(self, request: CompletionRequest) -> Completion:
        """Return one full completion."""

    def stream(self, request: CompletionRequest) -> AbstractContextManager[ChunkStream]:
        """Open a streamed completion; leaving the context closes the transport."""
