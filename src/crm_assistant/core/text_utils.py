from __future__ import annotations

from typing import Any

import pandas as pd

# Turkish dotted/dotless capitals must be mapped before str.lower():
# "İ".lower() yields "i" + U+0307 and "I".lower() yields "i" instead of "ı".
_TURKISH_UPPER_MAP = str.maketrans({"İ": "i", "I": "ı"})


def normalize_text(x: Any) -> str:
    """
    Lowercase (Turkish-aware) and trim a value for matching.

    None / NaN / "nan" become the empty string so that records with missing
    names never match a message.
    """
    if x is None:
        return ""
    try:
        if pd.isna(x):
            return ""
    except (TypeError, ValueError):
        pass
    s = str(x).replace("\u00A0", " ").strip()
    if s.lower() in {"nan", "none", "null"}:
        return ""
    s = s.translate(_TURKISH_UPPER_MAP).lower()
    # Combining dot above left over from pre-lowered input
    return s.replace("\u0307", "")


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance (insertions, deletions, substitutions all cost 1).

    Classic dynamic-programming table, kept to two rows.
    Time O(len(a) * len(b)), memory O(min(len(a), len(b))).
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(
                    previous[j] + 1,         # deletion
                    current[j - 1] + 1,      # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def fuzzy_tolerance(keyword: str) -> int:
    """Maximum accepted edit distance for a keyword: floor(len/4) + 1."""
    return len(keyword) // 4 + 1


def capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text
