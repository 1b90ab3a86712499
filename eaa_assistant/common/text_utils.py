"""Small text helpers shared by the fast paths and the agents."""

import re
from typing import Set

_NON_WORD_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _NON_WORD_RE.sub(" ", (text or "").lower())
    return _SPACES_RE.sub(" ", text).strip()


def word_set(text: str) -> Set[str]:
    return set(normalize_text(text).split())


def word_overlap(a: str, b: str) -> float:
    """Shared words over the larger vocabulary of the two texts."""
    words_a, words_b = word_set(a), word_set(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)].rstrip() + "..."
