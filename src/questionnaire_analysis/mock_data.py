"""Generate a synthetic questionnaire dataset for development and testing."""

from __future__ import annotations

import random
from pathlib import Path

from questionnaire_analysis.io.save import save_json

MOCK_QUESTIONNAIRE_ID = "mock-community-survey"

_GROUPS = [
    ("grp-neighbourhood", "Neighbourhood life"),
    ("grp-services", "Public services"),
    ("grp-mobility", "Work and mobility"),
    ("grp-future", "Plans for the future"),
]

_QUESTIONS = [
    ("q-safety", "grp-neighbourhood", "How safe do you feel in your neighbourhood after dark?"),
    ("q-community", "grp-neighbourhood", "What would make it easier to meet your neighbours?"),
    ("q-services", "grp-services", "Which local public service works best for you, and why?"),
    ("q-healthcare", "grp-services", "Describe your last experience with local healthcare."),
    ("q-commute", "grp-mobility", "How do you usually get to work or school?"),
    ("q-remote", "grp-mobility", "Would you use a shared co-working space nearby?"),
    ("q-stay", "grp-future", "Do you expect to still live here in five years?"),
    ("q-priority", "grp-future", "What single investment should the city make first?"),
]

_ANSWERS: dict[str, list[str]] = {
    "q-safety": [
        "Mostly safe, but the park lighting is poor.",
        "I avoid the underpass at night.",
        "Very safe, people look out for each other.",
        "Not safe since the local police station closed.",
    ],
    "q-community": [
        "A monthly street fair or shared garden.",
        "A community centre open in the evenings.",
        "Honestly I am happy keeping to myself.",
        "Workshops for parents with small kids.",
    ],
    "q-services": [
        "The library, the staff are helpful and it is quiet.",
        "Waste collection is reliable.",
        "None, everything takes too long.",
        "The municipal sports hall.",
    ],
    "q-healthcare": [
        "I waited three months for a specialist appointment.",
        "The clinic was fast and friendly.",
        "I had to travel to another town for a scan.",
        "Reception never answers the phone.",
    ],
    "q-commute": [
        "By bus, it is slow but cheap.",
        "I drive because there is no direct connection.",
        "Bicycle whenever the weather allows.",
        "I work from home most days.",
    ],
    "q-remote": [
        "Yes, if it had decent internet and long opening hours.",
        "Maybe once a week.",
        "No, I prefer working from home.",
        "Yes, I would even pay a small fee.",
    ],
    "q-stay": [
        "Probably not, there are no jobs in my field.",
        "Yes, my family is here.",
        "Only if housing gets cheaper.",
        "Definitely, I just bought a flat.",
    ],
    "q-priority": [
        "Better public transport to the city centre.",
        "More affordable housing.",
        "A new health clinic.",
        "Safer cycling routes.",
    ],
}

_FAKE_NAMES = ["Anna Kowalska", "Jan Nowak", "Maria Wiśniewska", "Piotr Zieliński"]
_PII_SUFFIXES = [
    "You can reach me at {email} if you want details.",
    "Call me on {phone}, my name is {name}.",
    "I live in Warszawa on ul. Długa 12.",
    "Contact {name} ({email}) for follow-up.",
]

_QUASI_IDENTIFIERS = {
    "age_group": ["18-24", "25-34", "35-49", "50-64", "65+"],
    "region": ["north", "south", "centre"],
    "gender": ["female", "male", "undisclosed"],
}


def _with_fake_pii(answer: str, *, respondent: int, rng: random.Random) -> str:
    name = _FAKE_NAMES[respondent % len(_FAKE_NAMES)]
    first, last = name.lower().split(" ")
    suffix = rng.choice(_PII_SUFFIXES).format(
        name=name,
        email=f"{first}.{last}@example.test",
        phone=f"+48 600 {respondent % 1000:03d} {rng.randint(100, 999)}",
    )
    return f"{answer} {suffix}"


def generate_mock_dataset(
    respondents: int = 24,
    *,
    seed: int = 7,
    pii_rate: float = 0.15,
    answer_rate: float = 0.9,
    questionnaire_id: str = MOCK_QUESTIONNAIRE_ID,
) -> dict:
    """Return a deterministic ``{questionnaire, responses, consents}`` document."""

    if respondents <= 0:
        raise ValueError(f"respondents must be positive, got {respondents}.")
    if not 0.0 <= pii_rate <= 1.0:
        raise ValueError(f"pii_rate must be in [0, 1], got {pii_rate}.")

    rng = random.Random(seed)
    questionnaire = {
        "questionnaire_id": questionnaire_id,
        "title": "Community life survey",
        "groups": [
            {"group_id": group_id, "title": title, "order_index": index}
            for index, (group_id, title) in enumerate(_GROUPS)
        ],
        "questions": [
            {"question_id": question_id, "group_id": group_id, "text": text, "order_index": index}
            for index, (question_id, group_id, text) in enumerate(_QUESTIONS)
        ],
    }

    responses: list[dict] = []
    consents: list[dict] = []
    for respondent in range(respondents):
        user_id = f"user-{respondent + 1:03d}"
        quasi = {
            field: values[(respondent // 2) % len(values)]
            for field, values in _QUASI_IDENTIFIERS.items()
        }
        consents.append(
            {
                "questionnaire_id": questionnaire_id,
                "user_id": user_id,
                "consent_type": "research_analysis",
                "granted": rng.random() > 0.05,
            }
        )
        for question_id, _, _ in _QUESTIONS:
            if rng.random() > answer_rate:
                continue
            answer = rng.choice(_ANSWERS[question_id])
            if rng.random() < pii_rate:
                answer = _with_fake_pii(answer, respondent=respondent, rng=rng)
            responses.append(
                {
                    "response_id": f"resp-{len(responses) + 1:05d}",
                    "question_id": question_id,
                    "user_id": user_id,
                    "answer": answer,
                    "metadata": {
                        "time_spent_ms": rng.randint(4_000, 90_000),
                        "edit_count": rng.randint(0, 4),
                        "question_type": "text",
                        "ip_hash": f"{rng.getrandbits(64):016x}",
                        **quasi,
                    },
                }
            )

    return {"questionnaire": questionnaire, "responses": responses, "consents": consents}


def write_mock_dataset(path: str | Path, **kwargs) -> Path:
    """Generate a mock dataset and write it atomically as JSON."""

    return save_json(path, generate_mock_dataset(**kwargs))
