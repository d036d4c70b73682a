import html
import re
from enum import Enum

import bleach


class Rejection(str, Enum):
    """Reasons a question is refused before any lookup or provider call."""

    TOO_SHORT = "Please enter a complete question (minimum 3 characters)"
    PERSONAL_ADVICE_REQUESTED = (
        "Educational questions only. Rephrase (e.g., 'What causes chest pain in MI?')"
    )

    @property
    def message(self) -> str:
        return self.value


MIN_QUESTION_LENGTH = 3

PERSONAL_ADVICE_PATTERNS = [
    r"my (symptom|pain|condition|diagnosis|chest|headache|fever|cough|rash)",
    r"should i take",
    r"what dose",
    r"prescribe",
    r"diagnose me",
    r"treat my",
    r"am i having",
    r"is this serious",
    r"help me",
]

_COMPILED_PATTERNS = [re.compile(p, re.IGNORECASE) for p in PERSONAL_ADVICE_PATTERNS]


def clean_question(text: str | None, max_length: int = 2000) -> str:
    """Strip HTML tags, bound the length and trim surrounding whitespace."""
    if not text:
        return ""
    # bleach escapes bare '<' and '&'; undo that so the text stays plain
    text = html.unescape(bleach.clean(text, tags=[], strip=True))
    return text[:max_length].strip()


def requests_personal_advice(text: str) -> bool:
    return any(pattern.search(text) for pattern in _COMPILED_PATTERNS)


def validate_question(text: str | None, max_length: int = 2000) -> tuple[str, Rejection | None]:
    """Validate user input. Returns (cleaned_text, rejection).

    rejection is None when the question is accepted.
    """
    cleaned = clean_question(text, max_length)

    if len(cleaned) < MIN_QUESTION_LENGTH:
        return cleaned, Rejection.TOO_SHORT

    if requests_personal_advice(cleaned):
        return cleaned, Rejection.PERSONAL_ADVICE_REQUESTED

    return cleaned, None
