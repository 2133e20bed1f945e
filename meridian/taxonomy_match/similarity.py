"""
Similarity Scorer - 0-100 confidence that two labels name the same concept.

Pure and commutative. Code bonuses are applied by callers, not here.
"""

import math
from typing import Optional

from rapidfuzz import distance

EXACT_SCORE = 100
CONTAINS_SCORE = 90


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def score(a: Optional[str], b: Optional[str]) -> int:
    """
    Score two labels.

    Exact (case-insensitive, trimmed) -> 100, containment -> 90, otherwise
    normalized Levenshtein similarity rounded to an integer.
    """
    s1 = _normalize(a)
    s2 = _normalize(b)

    if s1 == s2:
        return EXACT_SCORE
    if s1 in s2 or s2 in s1:
        return CONTAINS_SCORE

    longest = max(len(s1), len(s2))
    edits = distance.Levenshtein.distance(s1, s2)
    # half-up rounding, so 12.5 scores 13
    return math.floor(100 * (longest - edits) / longest + 0.5)


def codes_match(code_a: Optional[str], code_b: Optional[str]) -> bool:
    """Both codes present and identical."""
    return bool(code_a) and bool(code_b) and code_a == code_b


def with_code_bonus(base: int, code_a: Optional[str], code_b: Optional[str], bonus: int = 10) -> int:
    """Add a flat bonus when an auxiliary code matches exactly, capped at 100."""
    if codes_match(code_a, code_b):
        return min(base + bonus, 100)
    return base


def weighted_score(
    name_a: Optional[str],
    code_a: Optional[str],
    name_b: Optional[str],
    code_b: Optional[str],
    name_weight: float = 0.7,
    code_weight: float = 0.3,
) -> float:
    """Blend name similarity with an all-or-nothing code match."""
    code_similarity = 100 if codes_match(code_a, code_b) else 0
    return name_weight * score(name_a, name_b) + code_weight * code_similarity
