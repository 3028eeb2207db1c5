"""Company-name similarity scoring used when matching against ERP code lists.

Scores are integers in ``[0, 100]``.  Both inputs are normalised first so
that legal-entity suffixes and punctuation do not count against a match:
``"Acme Inc."`` and ``"ACME INCORPORATED"`` both reduce to ``"acme"``.  A
normalised identity scores 95; 100 is left for callers that detect a true
exact match on the raw values.
"""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

LEGAL_SUFFIXES = (
    "inc",
    "incorporated",
    "corp",
    "corporation",
    "llc",
    "ltd",
    "limited",
    "co",
    "company",
    "plc",
    "gmbh",
    "sa",
    "ag",
    "bv",
    "nv",
)

NORMALISED_MATCH_SCORE = 95
CONTAINMENT_BOOST = 15

_SUFFIX_PATTERN = re.compile(r"\b(?:" + "|".join(LEGAL_SUFFIXES) + r")\b")
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]|_")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalise_company_name(value: str) -> str:
    """Return ``value`` lower-cased with suffixes and punctuation removed."""

    text = (value or "").lower()
    text = _SUFFIX_PATTERN.sub("", text)
    text = _PUNCTUATION_PATTERN.sub("", text)
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def _ratio(distance: int, max_len: int) -> int:
    # round-half-up of ((max_len - distance) / max_len) * 100 without floats
    return (200 * (max_len - distance) + max_len) // (2 * max_len)


def similarity(a: str, b: str) -> int:
    """Score how closely two company names match.

    The edit distance is the classic unit-cost Levenshtein distance between
    the normalised strings.  When one normalised name contains the other the
    score is boosted by 15 points but never beyond the normalised-identity
    score.
    """

    left = normalise_company_name(a)
    right = normalise_company_name(b)

    if left and left == right:
        return NORMALISED_MATCH_SCORE

    max_len = max(len(left), len(right))
    if max_len == 0:
        return 100

    distance = Levenshtein.distance(left, right)
    score = _ratio(distance, max_len)

    if left and right and (left in right or right in left):
        score = min(score + CONTAINMENT_BOOST, NORMALISED_MATCH_SCORE)

    return score


__all__ = ["LEGAL_SUFFIXES", "normalise_company_name", "similarity"]
