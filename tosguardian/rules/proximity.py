"""
Verb-near-noun search used for medical claim detection
("cures ... cancer", "treats your diabetes").
"""
from __future__ import annotations

import re
from bisect import bisect_left
from typing import Sequence

from .fuzzy import fuzzy_match_any

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+", re.I)


def tokenize(text: str | None) -> list[str]:
    """Alphanumeric runs; everything else is a separator."""
    return [t for t in _TOKEN_SPLIT_RE.split(str(text or "")) if t]


def matched_indices(tokens: Sequence[str], terms: Sequence[str], max_edits: int = 1) -> list[int]:
    return [i for i, t in enumerate(tokens) if fuzzy_match_any(t, terms, max_edits)]


def verb_near_noun(
    text: str | None,
    verbs: Sequence[str],
    nouns: Sequence[str],
    window: int = 6,
    max_edits: int = 1,
) -> bool:
    """True if some verb token and some noun token are at most `window` tokens apart.

    One token can count as both verb and noun (distance 0).
    """
    tokens = tokenize(text)
    verb_idx = matched_indices(tokens, verbs, max_edits)
    if not verb_idx:
        return False
    noun_idx = matched_indices(tokens, nouns, max_edits)
    if not noun_idx:
        return False
    # noun_idx is sorted; check the nearest noun on each side of every verb.
    for iv in verb_idx:
        pos = bisect_left(noun_idx, iv)
        for j in (pos - 1, pos):
            if 0 <= j < len(noun_idx) and abs(noun_idx[j] - iv) <= window:
                return True
    return False
