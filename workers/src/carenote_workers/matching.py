"""Fuzzy matching of free-text concern names against existing titles.

Scoring per candidate (both sides lowercased, trimmed, accents stripped):
- exact normalized match scores 1.0
- whole-word containment in either direction (4+ characters) scores
  0.75-0.95, higher when the two strings are closer in length
- otherwise the token overlap ratio (shared / total distinct significant words)

The best candidate wins when its score clears the threshold. Ties go to the
most recent candidate: callers either pass candidates ordered most recent
first, or pass an aligned ``recency`` sequence.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Sequence
from typing import Any

DEFAULT_MATCH_THRESHOLD = 0.5

# Shorter fragments ("flu", "ear") sit inside unrelated titles.
_MIN_SUBSTRING_LENGTH = 4

_STOP_WORDS = frozenset({
    # en
    "the", "and", "in", "of", "a", "an", "for", "with", "on", "at", "to", "my",
    # es
    "de", "la", "el", "en", "y", "del", "los", "las", "un", "una", "por", "mi",
    # pt
    "da", "do", "das", "dos", "no", "na", "em", "com", "para", "um", "uma",
    # fr
    "le", "les", "des", "du", "au", "aux", "avec", "dans", "pour", "mon", "ma",
})

_TOKEN_SPLIT = re.compile(r"[^\w]+")


def normalize(text: str) -> str:
    """Lowercase, trim, collapse whitespace and strip combining accents."""
    decomposed = unicodedata.normalize("NFKD", text.strip().lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.split())


def significant_words(text: str) -> set[str]:
    return {
        word
        for word in _TOKEN_SPLIT.split(normalize(text))
        if len(word) > 2 and word not in _STOP_WORDS
    }


def _contains_words(longer: str, shorter: str) -> bool:
    """``shorter`` occurs in ``longer`` starting and ending on word boundaries."""
    return re.search(rf"(?<!\w){re.escape(shorter)}(?!\w)", longer) is not None


def similarity(target: str, candidate: str) -> float:
    """Score in [0, 1] for how well ``candidate`` names ``target``."""
    left = normalize(target)
    right = normalize(candidate)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0

    shorter, longer = sorted((left, right), key=len)
    if len(shorter) >= _MIN_SUBSTRING_LENGTH and _contains_words(longer, shorter):
        return 0.75 + 0.2 * (len(shorter) / len(longer))

    left_words = significant_words(left)
    right_words = significant_words(right)
    union = left_words | right_words
    if not union:
        return 0.0
    return len(left_words & right_words) / len(union)


def find_best_match(
    target: str,
    candidates: Sequence[str],
    *,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    recency: Sequence[Any] | None = None,
) -> int | None:
    """Return the index of the best matching candidate, or None."""
    if recency is not None and len(recency) != len(candidates):
        raise ValueError("recency must align with candidates")
    if not normalize(target):
        return None

    best_index: int | None = None
    best_score = 0.0
    for index, candidate in enumerate(candidates):
        score = similarity(target, candidate)
        if score < threshold:
            continue
        if best_index is None or score > best_score:
            best_index, best_score = index, score
        elif (
            score == best_score
            and recency is not None
            and recency[index] > recency[best_index]
        ):
            best_index = index
    return best_index


def match(
    target: str,
    candidates: Sequence[str],
    *,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    recency: Sequence[Any] | None = None,
) -> str | None:
    index = find_best_match(target, candidates, threshold=threshold, recency=recency)
    return None if index is None else candidates[index]
