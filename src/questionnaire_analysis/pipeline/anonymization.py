"""PII detection, redaction, and k-anonymity checks for survey responses."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import secrets
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from questionnaire_analysis.schemas import DetectedPII, RawResponse, SanitizedResponse

logger = logging.getLogger(__name__)

AnonymizationLevel = Literal["partial", "full"]
SUPPORTED_LEVELS = {"partial", "full"}

_UPPER = "A-ZĄĆĘŁŃÓŚŹŻ"
_LOWER = "a-ząćęłńóśźż"

_FIRST_NAMES = (
    "Anna", "Jan", "Maria", "Katarzyna", "Piotr", "Joanna", "Andrzej", "Małgorzata",
    "Krzysztof", "Agnieszka", "Tomasz", "Barbara", "Michał", "Ewa", "Stanisław", "Zofia",
    "Marek", "Beata", "Paweł", "Łukasz", "Karolina", "Marcin", "Monika", "Jakub",
    "Natalia", "Wojciech", "Bartosz", "Aleksandra", "Dorota", "Kamil",
    "John", "Mary", "James", "Patricia", "Robert", "Jennifer", "Michael", "Linda",
    "William", "Elizabeth", "David", "Susan", "Richard", "Sarah", "Thomas", "Emily",
)

_CITIES = (
    "Warszawa", "Warsaw", "Kraków", "Krakow", "Łódź", "Wrocław", "Poznań", "Gdańsk",
    "Szczecin", "Bydgoszcz", "Lublin", "Katowice", "Białystok", "Gdynia", "Częstochowa",
    "Olsztyn", "Rzeszów", "Opole", "Kielce", "Toruń", "Gliwice", "Zabrze", "Sosnowiec",
    "London", "Berlin", "Paris", "Madrid", "Prague", "Vienna", "New York", "Chicago",
)

PII_SEVERITY: dict[str, str] = {
    "national_id": "high",
    "card": "high",
    "iban": "high",
    "id_document": "high",
    "passport": "high",
    "person_name": "high",
    "email": "medium",
    "phone": "medium",
    "ip_address": "medium",
    "first_name": "medium",
}

PII_RECOMMENDATIONS: dict[str, list[str]] = {
    "national_id": [
        "National ID numbers are sensitive personal data and must always be removed.",
        "Consider whether an age range would serve the research purpose instead.",
    ],
    "email": [
        "Keep only the email domain if provider trends are needed.",
        "Hash emails when they are needed for respondent deduplication.",
    ],
    "phone": ["Keep only the area code if regional analysis is needed."],
    "person_name": ["Use pronouns or first names only if gender analysis is needed."],
    "ip_address": ["Keep only country or region information for geographic analysis."],
}

_BASE_RECOMMENDATIONS = [
    "Consider removing this information before analysis.",
    "Verify that this information is necessary for the research purpose.",
]


@dataclass(frozen=True, slots=True)
class RedactionRule:
    """One detection pattern and the token that replaces its matches."""

    category: str
    pattern: re.Pattern[str]
    token: str
    description: str
    accept: Callable[[str], bool] | None = None
    keep_prefix_group: str | None = None


def _digit_count_between(low: int, high: int) -> Callable[[str], bool]:
    def _accept(value: str) -> bool:
        digits = sum(char.isdigit() for char in value)
        return low <= digits <= high

    return _accept


def _word_alternation(words: Iterable[str]) -> str:
    ordered = sorted(set(words), key=len, reverse=True)
    return "|".join(re.escape(word) for word in ordered)


PATTERN_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(
        "url",
        re.compile(r"https?://[^\s<>\"']+|\bwww\.[^\s<>\"']+"),
        "[URL]",
        "URLs and links",
    ),
    RedactionRule(
        "email",
        re.compile(r"[\w.%+-]+@[\w-]+(?:\.[\w-]+)*\.[^\W\d_]{2,}(?!\w)"),
        "[EMAIL]",
        "Email addresses",
    ),
    RedactionRule(
        "social_profile",
        re.compile(
            r"(?i:\b(?:facebook|instagram|linkedin|twitter|tiktok|x)\.com/[\w/.-]+)"
        ),
        "[SOCIAL_PROFILE]",
        "Social media profile links",
    ),
    RedactionRule(
        "handle",
        re.compile(r"(?<![\w.])@[A-Za-z0-9_]{2,}"),
        "[HANDLE]",
        "Social media handles",
    ),
    RedactionRule(
        "iban",
        re.compile(r"\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?[A-Z0-9]{1,3})?\b"),
        "[IBAN]",
        "IBAN bank account numbers",
    ),
    RedactionRule(
        "card",
        re.compile(r"\b(?:\d{4}[ -]?){3}\d{4}\b|\b\d{13,19}\b"),
        "[CARD]",
        "Payment card numbers",
    ),
    RedactionRule(
        "date",
        re.compile(r"\b\d{1,2}[./-]\d{1,2}[./-]\d{2,4}\b|\b\d{4}-\d{2}-\d{2}\b"),
        "[DATE]",
        "Dates, including dates of birth",
    ),
    RedactionRule(
        "ip_address",
        re.compile(
            r"\b(?:\d{1,3}\.){3}\d{1,3}\b|\b(?:[A-Fa-f0-9]{1,4}:){7}[A-Fa-f0-9]{1,4}\b"
        ),
        "[IP]",
        "IPv4 and IPv6 addresses",
    ),
    RedactionRule(
        "national_id",
        re.compile(r"(?<!\d)\d{11}(?!\d)"),
        "[NATIONAL_ID]",
        "National identification numbers",
    ),
    RedactionRule(
        "tax_id",
        re.compile(
            r"\b\d{3}-\d{3}-\d{2}-\d{2}\b|\b\d{3}-\d{2}-\d{2}-\d{3}\b|\b\d{3}-\d{2}-\d{4}\b"
        ),
        "[TAX_ID]",
        "Tax and social security numbers",
    ),
    RedactionRule(
        "driving_licence",
        re.compile(r"\b\d{5}/\d{2}/\d{4}\b"),
        "[DRIVING_LICENCE]",
        "Driving licence numbers",
    ),
    RedactionRule(
        "postal_code",
        re.compile(r"\b\d{2}-\d{3}\b"),
        "[POSTAL_CODE]",
        "Postal codes",
    ),
    RedactionRule(
        "phone",
        re.compile(
            r"(?<![\w+])(?:\+\d{1,3}[\s.-]?)?(?:\(\d{1,4}\)[\s.-]?)?"
            r"\d{2,4}(?:[\s.-]?\d{2,4}){1,4}(?!\w)"
        ),
        "[PHONE]",
        "Phone numbers",
        accept=_digit_count_between(7, 15),
    ),
    RedactionRule(
        "id_document",
        re.compile(r"\b[A-Z]{3}\s?\d{6}\b"),
        "[ID_DOCUMENT]",
        "Identity document numbers",
    ),
    RedactionRule(
        "passport",
        re.compile(r"\b[A-Z]{2}\d{7}\b"),
        "[PASSPORT]",
        "Passport numbers",
    ),
)

ENTITY_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(
        "street",
        re.compile(
            rf"\b(?:ul\.|ulica|al\.|aleja)\s*[{_UPPER}][{_LOWER}]+(?:\s+[{_UPPER}][{_LOWER}]+)*"
            rf"(?:\s+\d+[a-z]?(?:/\d+)?)?"
            rf"|\b\d+[a-z]?\s+[{_UPPER}][{_LOWER}]+\s+(?:Street|St\.|Avenue|Ave\.|Road|Rd\.|Lane)"
        ),
        "[STREET]",
        "Street addresses",
    ),
    RedactionRule(
        "company",
        re.compile(
            rf"(?:\b[{_UPPER}][\w&-]+\s+)?"
            r"\b(?:Sp\.\s?z\s?o\.\s?o\.|S\.A\.|Ltd\.?|Inc\.?|LLC|GmbH)(?!\w)"
        ),
        "[COMPANY]",
        "Company names with legal forms",
    ),
    RedactionRule(
        "location_phrase",
        re.compile(
            r"(?P<prefix>(?i:\bI live in|\bI work (?:at|in)|\bI study (?:at|in)"
            r"|\bmieszkam w|\bpracuję w|\buczę się w))"
            rf"\s+[{_UPPER}][{_LOWER}]+"
        ),
        "[LOCATION]",
        "Self-disclosed places of residence or work",
        keep_prefix_group="prefix",
    ),
    RedactionRule(
        "honorific_name",
        re.compile(
            r"\b(?:Mr|Mrs|Ms|Dr|Prof|Pan|Pani)\.?\s+"
            rf"[{_UPPER}][{_LOWER}]+(?:-[{_UPPER}][{_LOWER}]+)?"
        ),
        "[PERSON]",
        "Names preceded by an honorific",
    ),
    RedactionRule(
        "city",
        re.compile(rf"\b(?:{_word_alternation(_CITIES)})\b"),
        "[CITY]",
        "City names",
    ),
    RedactionRule(
        "person_name",
        re.compile(rf"\b[{_UPPER}][{_LOWER}]{{2,20}}\s+[{_UPPER}][{_LOWER}]{{2,20}}\b"),
        "[PERSON]",
        "First and last name pairs",
    ),
    RedactionRule(
        "first_name",
        re.compile(rf"\b(?:{_word_alternation(_FIRST_NAMES)})\b"),
        "[PERSON]",
        "Common first names",
    ),
)

_TOKEN_PATTERN = re.compile(r"\[[A-Z_]+\]")
_MAX_REDACTION_PASSES = 8


@dataclass(frozen=True, slots=True)
class AnonymizationResult:
    """Redacted text plus what was found in it."""

    redacted_text: str
    detected_pii: list[DetectedPII] = field(default_factory=list)
    level: str = "full"
    checksum: str = ""


def checksum(value: Any) -> str:
    """SHA-256 of a string, or of the canonical JSON encoding of any other value."""

    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def rules_for_level(level: str) -> tuple[RedactionRule, ...]:
    if level not in SUPPORTED_LEVELS:
        allowed = ", ".join(sorted(SUPPORTED_LEVELS))
        raise ValueError(f"Unsupported anonymization level '{level}'. Expected one of: {allowed}.")
    if level == "full":
        return PATTERN_RULES + ENTITY_RULES
    return PATTERN_RULES


def _apply_rule(rule: RedactionRule, text: str) -> tuple[str, list[str]]:
    matches: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        value = match.group(0)
        if rule.accept is not None and not rule.accept(value):
            return value
        matches.append(value)
        if rule.keep_prefix_group:
            return f"{match.group(rule.keep_prefix_group)} {rule.token}"
        return rule.token

    return rule.pattern.sub(_replace, text), matches


def _merge_detections(target: Counter[str], detections: Iterable[DetectedPII]) -> None:
    for item in detections:
        target[item.category] += item.count


def _detections_from(found: Counter[str]) -> list[DetectedPII]:
    return [
        DetectedPII(category=category, count=count) for category, count in found.items() if count
    ]


def anonymize_text(text: str | None, level: AnonymizationLevel = "full") -> AnonymizationResult:
    """Replace PII spans with category tokens.

    ``partial`` applies pattern rules only; ``full`` also redacts named
    entities. Rules are reapplied until the text stops changing, so the
    result is a fixed point and redacting it again is a no-op.
    """

    rules = rules_for_level(level)
    if not text:
        return AnonymizationResult(redacted_text="", level=level, checksum=checksum(""))

    redacted = text
    found: Counter[str] = Counter()
    for _ in range(_MAX_REDACTION_PASSES):
        before = redacted
        for rule in rules:
            redacted, matches = _apply_rule(rule, redacted)
            if matches:
                found[rule.category] += len(matches)
        if redacted == before:
            break
    else:
        logger.warning("Redaction did not settle after %d passes.", _MAX_REDACTION_PASSES)

    return AnonymizationResult(
        redacted_text=redacted,
        detected_pii=_detections_from(found),
        level=level,
        checksum=checksum(redacted),
    )


def anonymize_value(
    value: Any, level: AnonymizationLevel = "full"
) -> tuple[Any, list[DetectedPII]]:
    """Redact strings inside nested lists and dicts, leaving other scalars untouched."""

    found: Counter[str] = Counter()

    def _walk(item: Any) -> Any:
        if isinstance(item, str):
            result = anonymize_text(item, level)
            _merge_detections(found, result.detected_pii)
            return result.redacted_text
        if isinstance(item, list):
            return [_walk(child) for child in item]
        if isinstance(item, dict):
            return {key: _walk(child) for key, child in item.items()}
        return item

    return _walk(value), _detections_from(found)


def answer_to_text(answer: Any) -> str:
    """Flatten an already-redacted answer into the text form used in prompts."""

    if answer is None:
        return ""
    if isinstance(answer, str):
        return answer
    if isinstance(answer, bool):
        return "yes" if answer else "no"
    if isinstance(answer, (int, float)):
        return str(answer)
    if isinstance(answer, list):
        return ", ".join(answer_to_text(item) for item in answer)
    return json.dumps(answer, sort_keys=True, ensure_ascii=False, default=str)


def canonicalize_text(text: str) -> str:
    """Case-fold, trim, and collapse whitespace for equivalence-class grouping."""

    return " ".join(text.casefold().split())


def verify_k_anonymity(sanitized_texts: Sequence[str], k: int) -> bool:
    """Return True iff every canonical equivalence class has at least ``k`` members."""

    if k <= 0:
        raise ValueError(f"k must be positive, got {k}.")
    classes = Counter(canonicalize_text(text) for text in sanitized_texts)
    return all(count >= k for count in classes.values())


_GENERALIZATIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\d+"), "[NUMBER]"),
    (re.compile(rf"(?<!\[)\b[{_UPPER}][{_LOWER}]{{4,}}\b"), "[WORD]"),
    (re.compile(rf"(?<!\[)\b[{_UPPER}]{{2,}}\b(?!\])"), "[ACRONYM]"),
)


def generalize_text(text: str) -> str:
    generalized = text
    for pattern, token in _GENERALIZATIONS:
        generalized = pattern.sub(token, generalized)
    return generalized


def ensure_k_anonymity(
    texts: Sequence[str],
    k: int,
    *,
    max_iterations: int = 5,
) -> list[str]:
    """Generalize texts until k-anonymity holds or the iteration cap is reached."""

    current = list(texts)
    iterations = 0
    while not verify_k_anonymity(current, k) and iterations < max_iterations:
        current = [generalize_text(text) for text in current]
        iterations += 1
    return current


def pii_detection_report(text: str) -> list[dict[str, Any]]:
    """Describe every PII category found in ``text`` with a severity and handling advice."""

    report: list[dict[str, Any]] = []
    for rule in PATTERN_RULES + ENTITY_RULES:
        _, matches = _apply_rule(rule, text)
        if not matches:
            continue
        severity = PII_SEVERITY.get(rule.category, "low")
        report.append(
            {
                "category": rule.category,
                "description": rule.description,
                "matches": list(dict.fromkeys(matches)),
                "severity": severity,
                "recommendations": [
                    *_BASE_RECOMMENDATIONS,
                    *PII_RECOMMENDATIONS.get(rule.category, []),
                ],
            }
        )
    return report


def validate_anonymization(original: str, redacted: str) -> dict[str, Any]:
    """Score redaction quality from 0 to 100, 20 points off per issue."""

    issues: list[str] = []
    recommendations: list[str] = []

    for rule in PATTERN_RULES:
        _, remaining = _apply_rule(rule, redacted)
        if remaining:
            issues.append(f"Still contains {rule.category}: {len(remaining)} occurrences")
            recommendations.append(f"Review {rule.description.lower()} patterns")

    if original and len(redacted) / len(original) < 0.3:
        issues.append("Anonymization may be too aggressive")
        recommendations.append("Consider using the partial anonymization level")

    if len(_TOKEN_PATTERN.sub("", redacted).strip()) < 20:
        issues.append("Very little non-PII content remaining")
        recommendations.append("Consider collecting more open-ended responses")

    return {
        "score": max(0, 100 - 20 * len(issues)),
        "issues": issues,
        "recommendations": recommendations,
    }


_PASSTHROUGH_METADATA = ("time_spent_ms", "edit_count", "question_type")
_HASHED_METADATA = ("ip_hash", "user_agent_hash")


class AnonymizationGate:
    """Salted, stateful anonymizer for raw responses.

    Anonymous user ids are cached for the lifetime of the instance so the
    same respondent maps to the same id across every call.
    """

    def __init__(
        self,
        *,
        salt: str | None = None,
        quasi_identifier_fields: Sequence[str] = (),
    ) -> None:
        self._salt = salt or secrets.token_hex(32)
        self._quasi_identifier_fields = tuple(quasi_identifier_fields)
        self._user_ids: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def quasi_identifier_fields(self) -> tuple[str, ...]:
        return self._quasi_identifier_fields

    def _salted_digest(self, value: str) -> str:
        return hashlib.sha256(f"{value}{self._salt}".encode()).hexdigest()

    def anonymous_response_id(self, response_id: str) -> str:
        return f"anon_{self._salted_digest(response_id)[:16]}"

    def anonymous_user_id(self, user_id: str) -> str:
        """Return the stable anonymous id for a source user."""

        with self._lock:
            cached = self._user_ids.get(user_id)
            if cached is None:
                cached = f"anon_user_{self._salted_digest(f'user_{user_id}')[:12]}"
                self._user_ids[user_id] = cached
            return cached

    def anonymize_text(
        self, text: str | None, level: AnonymizationLevel = "full"
    ) -> AnonymizationResult:
        return anonymize_text(text, level)

    def _sanitize_metadata(
        self, metadata: dict[str, Any], level: AnonymizationLevel
    ) -> dict[str, Any]:
        sanitized: dict[str, Any] = {}
        for key in _PASSTHROUGH_METADATA:
            if key in metadata:
                sanitized[key] = metadata[key]
        for key in _HASHED_METADATA:
            if metadata.get(key):
                sanitized[key] = self._salted_digest(str(metadata[key]))[:16]
        quasi: dict[str, Any] = {}
        for key in self._quasi_identifier_fields:
            if key in metadata and metadata[key] is not None:
                value, _ = anonymize_value(metadata[key], level)
                quasi[key] = value
        if quasi:
            sanitized["quasi_identifiers"] = quasi
        return sanitized

    def anonymize_response(
        self,
        response: RawResponse,
        level: AnonymizationLevel = "full",
    ) -> SanitizedResponse:
        """Produce the provider-safe view of one raw response."""

        answer, detections = anonymize_value(response.answer, level)
        text = answer_to_text(answer)
        if detections:
            logger.debug(
                "Redacted %d PII categories from response %s.",
                len(detections),
                self.anonymous_response_id(response.response_id),
            )
        return SanitizedResponse(
            id=self.anonymous_response_id(response.response_id),
            question_id=response.question_id,
            anonymous_user_id=self.anonymous_user_id(response.user_id),
            text=text,
            answer=answer,
            metadata=self._sanitize_metadata(response.metadata, level),
            detected_pii=detections,
            checksum=checksum(answer),
            level=level,
        )

    def anonymize_responses(
        self,
        responses: Iterable[RawResponse],
        level: AnonymizationLevel = "full",
    ) -> list[SanitizedResponse]:
        return [self.anonymize_response(response, level) for response in responses]


def quasi_identifier_projection(response: SanitizedResponse) -> str:
    """Canonical ``key=value`` projection of a response's quasi-identifiers."""

    quasi = response.metadata.get("quasi_identifiers") or {}
    return ";".join(f"{key}={quasi[key]}" for key in sorted(quasi))
