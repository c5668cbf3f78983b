"""
Typo-tolerant token matching. Distance is optimal-string-alignment
Damerau-Levenshtein (insert, delete, substitute and adjacent swap all cost 1),
compared case-insensitively.
"""
from __future__ import annotations

from typing import Iterable

from rapidfuzz import process
from rapidfuzz.distance import OSA


def edit_distance(a: str | None, b: str | None) -> int:
    return OSA.distance((a or "").lower(), (b or "").lower())


def fuzzy_match_any(token: str, candidates: Iterable[str], max_edits: int = 1) -> bool:
    """True if any candidate is within max_edits of token.

    No minimum token length: "fx" is one edit from "fix". Callers rely on that
    to catch short misspellings and accept the false positives it brings.
    """
    choices = [c for c in candidates if isinstance(c, str)]
    if not choices:
        return False
    hit = process.extractOne(
        token or "",
        choices,
        scorer=OSA.distance,
        processor=str.lower,
        score_cutoff=max_edits,
    )
    return hit is not None
