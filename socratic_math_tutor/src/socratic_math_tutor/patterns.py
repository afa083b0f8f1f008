"""
Pattern Library

Fixed regex and phrase matchers shared by the stuck counter and the
completion detector. Everything here is pure and stateless; all matching
is done on lower-cased text.
"""

import re
from typing import Iterable, Optional, Pattern, Sequence

# ==================== Student confusion ====================

CONFUSED_PATTERNS = [
    re.compile(r"don'?t\s+know", re.I),
    re.compile(r"no\s+idea", re.I),
    re.compile(r"confused", re.I),
    re.compile(r"stuck", re.I),
    re.compile(r"can'?t", re.I),
    re.compile(r"don'?t\s+understand", re.I),
    re.compile(r"^\s*no\s*[.!]?\s*$", re.I),
    re.compile(r"^\s*yes\s*[.!]?\s*$", re.I),  # a terse yes often hides confusion
]

SHORT_RESPONSE_LENGTH = 10

# ==================== Tutor still probing ====================

QUESTION_OPENERS = re.compile(
    r"\b(?:what|how|which|can\s+you|do\s+you|let'?s|tell\s+me)\b", re.I
)
QUESTION_TEMPLATES = re.compile(r"what\s+(?:do\s+you|is|are|would)\b", re.I)

# ==================== Student final answer ====================

NUMBER = r"-?\d+(?:\.\d+)?"

STANDALONE_NUMBER = re.compile(rf"^[+]?({NUMBER})\.?$")
VARIABLE_ASSIGNMENT = re.compile(
    rf"(?:^|\s)(?:[a-z]|answer|solution|result)\s*[=:]\s*({NUMBER})", re.I
)
ANSWER_PHRASE = re.compile(
    rf"(?:the\s+)?(?:answer|solution|it|that|result)(?:'s|\s+is|\s+equals?|\s*:)\s*({NUMBER})",
    re.I,
)
GOT_PHRASE = re.compile(
    rf"(?:i\s+)?(?:got|think|believe|calculated?)\s+(?:it'?s?\s+|that'?s?\s+)?({NUMBER})",
    re.I,
)
EMBEDDED_INTEGER = re.compile(r"(-?\d+)")
ANSWER_HINT_WORDS = re.compile(
    r"\b(?:answer|solution|result|equals?|final|total|so)\b", re.I
)
SHORT_ANSWER_LENGTH = 20

# ==================== Tutor confirmation ====================

STRONG_CONFIRMATION = re.compile(
    r"you'?ve\s+solved\s+it|you\s+solved\s+it|problem\s+is\s+solved"
    r"|you'?ve\s+completed|congratulations\s+on\s+completing",
    re.I,
)
THATS_CORRECT = re.compile(r"that'?s\s+(?:right|correct)", re.I)
CORRECTNESS = re.compile(r"\b(?:correct|right)\b", re.I)
ANSWER_TOKENS = re.compile(r"\b(?:answer|solution|found)\b", re.I)
PRAISE = re.compile(r"well\s+done|great\s+(?:job|work)|excellent|perfect", re.I)
SOLVING = re.compile(r"\bsolv(?:ed|ing)\b|\bsolution\b", re.I)
SOLVING_OR_ANSWER = re.compile(
    r"\bsolv(?:ed|ing|e)\b|\bsolution\b|\banswer\b|\bcorrect\b|\bright\b|\bfound\b", re.I
)

HIGH_VALUE_PHRASES = (
    "well done on solving",
    "congratulations on solving",
    "congratulations! you solved",
    "congratulations, you solved",
    "you've found the correct answer",
    "you found the correct answer",
    "that's the correct answer",
)

MEDIUM_VALUE_PHRASES = (
    "well done",
    "great work",
    "great job",
    "excellent",
    "perfect",
)

COMPLETION_CORRECTNESS = re.compile(r"\b(?:correct|right|found|answer)\b", re.I)


def normalize(text: Optional[str]) -> str:
    """Lower-case and straighten curly apostrophes so phrase lists stay simple."""
    if not text:
        return ""
    return text.replace("’", "'").replace("‘", "'").lower().strip()


def matches_any(patterns: Iterable[Pattern], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def find_any_phrase(phrases: Sequence[str], text: str) -> Optional[str]:
    """Return the first phrase (in list order) contained in `text`."""
    for phrase in phrases:
        if phrase in text:
            return phrase
    return None


def is_confused(text: str) -> bool:
    return matches_any(CONFUSED_PATTERNS, normalize(text))


def is_short_or_confused(text: str) -> bool:
    return len((text or "").strip()) < SHORT_RESPONSE_LENGTH or is_confused(text)


def asks_question(text: str) -> bool:
    """True when a tutor message is still probing the student."""
    content = normalize(text)
    return (
        "?" in content
        or QUESTION_OPENERS.search(content) is not None
        or QUESTION_TEMPLATES.search(content) is not None
    )
