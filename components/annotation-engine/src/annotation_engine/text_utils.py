"""Text normalization and similarity scoring."""

from __future__ import annotations

import re
from typing import Sequence

STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "he",
        "in",
        "is",
        "it",
        "its",
        "of",
        "on",
        "or",
        "that",
        "the",
        "to",
        "was",
        "were",
        "with",
    }
)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_MULTISPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Normalize text for comparison.

    Examples:
        >>> normalize_text("Vital signs: STABLE.")
        'vital signs stable'
    """
    lowered = _NON_ALPHANUMERIC.sub(" ", text.lower())
    return _MULTISPACE.sub(" ", lowered).strip()


def normalize_field_text(value: str) -> str:
    """Normalize an extracted field label or value for deduplication."""
    return _MULTISPACE.sub(" ", value.lower()).strip()


def tokenize(text: str) -> list[str]:
    """Split text into significant tokens.

    Tokens of two characters or fewer and stopwords are dropped.

    Examples:
        >>> tokenize("The patient is in no acute distress")
        ['patient', 'acute', 'distress']
    """
    return [
        token
        for token in normalize_text(text).split(" ")
        if len(token) > 2 and token not in STOPWORDS
    ]


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set overlap between two texts in the range [0.0, 1.0]."""
    a_tokens = set(tokenize(a))
    b_tokens = set(tokenize(b))
    if not a_tokens or not b_tokens:
        return 0.0
    intersection = len(a_tokens & b_tokens)
    union = len(a_tokens | b_tokens)
    return intersection / union if union else 0.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two embedding vectors.

    Degenerate input (empty, mismatched length or zero norm) scores 0.0.
    """
    if not a or not b:
        return 0.0
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(y * y for y in b) ** 0.5
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)
