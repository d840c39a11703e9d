"""
Fuzzy Name Matcher
Scores how likely two client / customer names refer to the same company

Tiers, in priority order:
- exact match of the normalized names      -> 1.0
- one normalized name contains the other   -> 0.9
- otherwise the Dice coefficient over character bigrams (0 = nothing shared, 1 = identical)
"""

from collections import Counter
from typing import Optional

from backoffice.services.name_normalizer import normalize_company_name

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.9


def dice_coefficient(first: str, second: str) -> float:
    """
    Dice coefficient over character bigrams, whitespace ignored.

    Examples:
        >>> dice_coefficient("boulangerie", "boulangerie")
        1.0
        >>> dice_coefficient("night", "nacht")
        0.25
    """
    first = "".join(first.split())
    second = "".join(second.split())

    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = Counter(first[i:i + 2] for i in range(len(first) - 1))

    intersection = 0
    for i in range(len(second) - 1):
        bigram = second[i:i + 2]
        if first_bigrams[bigram] > 0:
            first_bigrams[bigram] -= 1
            intersection += 1

    return (2.0 * intersection) / (len(first) + len(second) - 2)


def score_normalized(first: str, second: str) -> float:
    """Score two names that have already been through normalize_company_name"""
    # An empty name carries no evidence; "" would otherwise be contained in everything
    if not first or not second:
        return 0.0

    if first == second:
        return EXACT_SCORE

    if first in second or second in first:
        return CONTAINMENT_SCORE

    return dice_coefficient(first, second)


def score_names(first: Optional[str], second: Optional[str]) -> float:
    """Normalize both names and return a similarity score in [0, 1]"""
    return score_normalized(normalize_company_name(first), normalize_company_name(second))
