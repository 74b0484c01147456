"""Shared fakes and fixtures: scripted LLM providers, a keyword embedder, and small datasets."""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import pytest

from questionnaire_analysis.config import Settings
from questionnaire_analysis.models import (
    Completion,
    CompletionRequest,
    ProviderAdapter,
    ProviderCapabilities,
)
from questionnaire_analysis.pipeline import AnalysisEngine, AnonymizationGate, CachedEmbedder
from questionnaire_analysis.schemas import (
    ConsentRecord,
    Question,
    QuestionGroup,
    Questionnaire,
    QuestionnaireData,
    RawResponse,
)

_TYPE_LINE = re.compile(r"^Analysis type: (\w+)$", re.MULTILINE)
_RESPONSE_ID = re.compile(r'"id": "(anon_[0-9a-f]+)"')


def analysis_type_of(request: CompletionRequest) -> str:
    match = _TYPE_LINE.search(request.prompt)
    return match.group(1) if match else ""


def canned_reply(request: CompletionRequest) -> str:
    """A well-formed reply for whichever analysis type the prompt asks for."""

    analysis_type = analysis_type_of(request)
    if analysis_type == "thematic":
        payload = {
            "themes": [
                {"name": "Transport", "frequency": 2, "sentiment": -0.2, "examples": ["bus"]},
                {"name": "Safety", "frequency": 5, "sentiment": 0.1},
            ],
            "summary": "Residents talk about safety and transport.",
        }
    elif analysis_type == "clusters":
        ids = list(dict.fromkeys(_RESPONSE_ID.findall(request.prompt)))
        half = len(ids) // 2
        payload = {
            "clusters": [
                {"name": "Commuters", "members": ids[:half], "sentiment": -0.3},
                {"name": "Locals", "members": ids[half:], "sentiment": 0.4},
            ],
            "summary": "Two groups.",
        }
    elif analysis_type == "contradictions":
        payload = {
            "contradictions": [
                {
                    "respondent": "anon_user_x",
                    "type": "Attitudinal",
                    "severity": "HIGH",
                    "description": "Feels safe but avoids going out.",
                }
            ]
        }
    elif analysis_type == "insights":
        payload = {
            "insights": [{"title": "Mobility shapes safety", "sections": ["section-1"]}],
            "narrative": "Sections reinforce each other.",
        }
    elif analysis_type == "recommendations":
        payload = {
            "recommendations": [
                {
                    "title": "Light the park",
                    "priority": "medium",
                    "estimated_cost": "15k PLN",
                    "expected_impact": 0.6,
                },
                {"title": "New tram line", "priority": "high", "estimated_cost": 2_000_000},
            ]
        }
    else:
        payload = {}
    return json.dumps(payload)


Reply = str | Exception


class _FakeChunks:
    def __init__(self, parts: list[str], prompt_tokens: int | None, completion_tokens: int | None):
        self._parts = parts
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens

    def __iter__(self) -> Iterator[str]:
        for part in self._parts:
            if isinstance(part, Exception):
                raise part
            yield part


class FakeProvider:
    """LLM provider whose replies come from ``responder(request)``.

    A responder may return text or an exception instance, which is raised.
    Streams split the reply into ``chunk_size`` character chunks; ``stream_failure``
    of ``(n, error)`` raises ``error`` after the first ``n`` chunks.
    """

    def __init__(
        self,
        responder: Callable[[CompletionRequest], Reply] = canned_reply,
        *,
        name: str = "openai",
        streaming: bool = True,
        chunk_size: int = 16,
        usage: tuple[int | None, int | None] = (100, 50),
        stream_failure: tuple[int, Exception] | None = None,
    ) -> None:
        self.name = name
        self.capabilities = ProviderCapabilities(streaming=streaming, json_mode=True)
        self._responder = responder
        self._chunk_size = chunk_size
        self._usage = usage
        self._stream_failure = stream_failure
        self.requests: list[CompletionRequest] = []

    def _reply(self, request: CompletionRequest) -> str:
        self.requests.append(request)
        reply = self._responder(request)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def complete(self, request: CompletionRequest) -> Completion:
        text = self._reply(request)
        return Completion(
            text=text,
            model=request.model,
            prompt_tokens=self._usage[0],
            completion_tokens=self._usage[1],
        )

    @contextmanager
    def stream(self, request: CompletionRequest) -> Iterator[_FakeChunks]:
        text = self._reply(request)
        parts = [text[i : i + self._chunk_size] for i in range(0, len(text), self._chunk_size)]
        if self._stream_failure is not None:
            after, error = self._stream_failure
            parts = [*parts[:after], error]
        yield _FakeChunks(parts, *self._usage)

    def calls_for(self, analysis_type: str) -> int:
        return sum(1 for request in self.requests if analysis_type_of(request) == analysis_type)


class KeywordEmbedder:
    """Deterministic embeddings: one axis per keyword plus a hashed tie-breaker."""

    KEYWORDS = ("bus", "car", "bike", "safe", "park", "home")

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        lowered = text.lower()
        vector = [1.0 if keyword in lowered else 0.0 for keyword in self.KEYWORDS]
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        vector.append(0.05 + digest[0] / 2550.0)
        return vector


def make_questionnaire(questionnaire_id: str = "q1") -> Questionnaire:
    return Questionnaire(
        questionnaire_id=questionnaire_id,
        title="Neighbourhood survey",
        groups=[
            QuestionGroup(group_id="g-life", title="Life", order_index=0),
            QuestionGroup(group_id="g-move", title="Mobility", order_index=1),
        ],
        questions=[
            Question(
                question_id="q-safe", group_id="g-life", text="Do you feel safe?", order_index=0
            ),
            Question(
                question_id="q-commute",
                group_id="g-move",
                text="How do you commute?",
                order_index=1,
            ),
        ],
    )


_ANSWERS = {
    "q-safe": ["Yes, the park is safe.", "Not at night.", "Mostly safe.", "I stay home."],
    "q-commute": ["By bus.", "By car.", "By bike.", "Bus and tram."],
}


def make_data(
    questionnaire_id: str = "q1",
    *,
    respondents: int = 4,
    quasi: Callable[[int], dict] | None = None,
) -> QuestionnaireData:
    responses: list[RawResponse] = []
    for index in range(respondents):
        for question_id, answers in _ANSWERS.items():
            responses.append(
                RawResponse(
                    response_id=f"{questionnaire_id}-{question_id}-{index}",
                    question_id=question_id,
                    user_id=f"user-{index}",
                    answer=answers[index % len(answers)],
                    metadata=quasi(index) if quasi else {},
                )
            )
    return QuestionnaireData(
        questionnaire=make_questionnaire(questionnaire_id), responses=responses
    )


def granted(questionnaire_id: str = "q1") -> ConsentRecord:
    return ConsentRecord(questionnaire_id=questionnaire_id, user_id="user-0")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="",
        anthropic_api_key="",
        jina_api_key="",
        client_max_retries=3,
        client_backoff_seconds=0.0,
        client_backoff_jitter_seconds=0.0,
        provider_rate_limit_calls=1000,
        job_rate_limit_calls=1000,
        anonymization_salt="test-salt",
        quasi_identifier_fields=[],
        min_cluster_size=3,
        worker_count=2,
    )


@pytest.fixture
def gate() -> AnonymizationGate:
    return AnonymizationGate(salt="test-salt")


@pytest.fixture
def sanitized(gate):
    return gate.anonymize_responses(make_data().responses)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def adapter(settings, provider) -> ProviderAdapter:
    return ProviderAdapter(
        settings=settings,
        providers={"openai": provider, "anthropic": provider},
        sleep=lambda _: None,
    )


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def engine(settings, adapter, embedder) -> AnalysisEngine:
    return AnalysisEngine(adapter, settings=settings, embedder=CachedEmbedder(embedder))
