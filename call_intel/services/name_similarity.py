"""
Fuzzy comparison of person and business names.

Scores are on a 0-100 scale. Names are casefolded and whitespace-collapsed
first, so "  JOHN   smith" and "John Smith" are an exact match.
"""

from __future__ import annotations

from typing import Iterable, Optional

from rapidfuzz import fuzz


def normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").casefold().split())


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity of two names in [0, 100].

    Plain edit-distance ratio, or the token-sorted ratio when the same
    words appear in a different order ("Smith John"), whichever is higher.
    Both scorers are symmetric, so the result is too.
    """
    left = normalize_name(a)
    right = normalize_name(b)

    if left == right:
        return 100.0
    if not left or not right:
        return 0.0

    score = max(fuzz.ratio(left, right), fuzz.token_sort_ratio(left, right))
    return round(float(score), 2)


def best_match(
    name: str,
    candidates: Iterable[tuple[str, str]],
    threshold: float,
) -> Optional[tuple[str, float]]:
    """
    Best ``(candidate_id, score)`` among ``(candidate_id, candidate_name)``
    pairs whose score strictly exceeds ``threshold``, or None.

    Ties keep the first candidate seen.
    """
    best: Optional[tuple[str, float]] = None
    for candidate_id, candidate_name in candidates:
        score = similarity(name, candidate_name)
        if score > threshold and (best is None or score > best[1]):
            best = (candidate_id, score)
    return best
