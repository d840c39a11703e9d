"""
Company Name Normalizer
Canonicalizes free-text client / customer names before they are compared
"""

import re

# Legal-entity forms that lead French company names
LEGAL_PREFIXES = ("sarl ", "sa ", "sas ", "eurl ", "sci ")

# Abbreviations expanded wherever they appear as a standalone word
ABBREVIATIONS = (
    (re.compile(r"(?<= )co(?= )"), "company"),
    (re.compile(r"(?<= )corp(?= )"), "corporation"),
    (re.compile(r"(?<= )bros(?= )"), "brothers"),
    (re.compile(r"(?:(?<= )|^)cie(?= )"), "company"),
    (re.compile(r"(?<= )ltd(?= )"), "limited"),
    (re.compile(r"(?<= )inc(?= )"), "incorporated"),
)

_SPECIAL_CHARS = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_company_name(name) -> str:
    """
    Normalize a company name for comparison.

    Lowercases, replaces punctuation with spaces, collapses whitespace, strips
    leading legal forms (SARL, SA, SAS, EURL, SCI) and expands common
    abbreviations. Pure and idempotent.

    Examples:
        >>> normalize_company_name("SARL Dupont Freres")
        'dupont freres'
        >>> normalize_company_name("Martin & Co. Traiteur")
        'martin company traiteur'
        >>> normalize_company_name(None)
        ''
    """
    if not name:
        return ""

    normalized = str(name).lower()
    normalized = _SPECIAL_CHARS.sub(" ", normalized)
    normalized = _WHITESPACE.sub(" ", normalized).strip()

    # Repeat until no legal form leads, so "sarl sa dupont" and "sci sarl dupont" agree
    stripped = True
    while stripped:
        stripped = False
        for prefix in LEGAL_PREFIXES:
            if normalized.startswith(prefix):
                normalized = normalized[len(prefix):]
                stripped = True

    for pattern, replacement in ABBREVIATIONS:
        normalized = pattern.sub(replacement, normalized)

    return normalized
