"""
Tone-preserving rewrites: neutralize medical claims, apply category
find/replace rules, and the last-resort neutral sentence.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from .rules.fuzzy import fuzzy_match_any

_logger = logging.getLogger(__name__)

NEUTRAL_VERB = "supports"
DEFAULT_NEUTRAL_NOUN = "overall wellness"
SAFE_MEDICAL_SENTENCE = "Designed to support everyday self-care and overall wellness"
SAFE_COMPLIANCE_SENTENCE = "Designed for general use and compliant with platform guidelines."

_MODAL_RE = re.compile(r"\b(may|might|could|can)\b", re.I)
_CAPITALIZED_RE = re.compile(r"^[A-Z]")
_WORD_SPLIT_RE = re.compile(r"(\W+)", re.ASCII)
_ALNUM_RE = re.compile(r"[a-z0-9]+", re.I)

_TIDY_RULES = (
    (re.compile(r"\b(help|helps)\s+supports\b", re.I), "supports"),
    (re.compile(r"\bsupports\s+supports\b", re.I), "supports"),
    (re.compile(r"\bmay\s+supports\b", re.I), "may support"),
    (re.compile(r"\bmight\s+supports\b", re.I), "might support"),
)


def _norm_ws(s: str | None) -> str:
    return " ".join(str(s or "").split())


def detect_style(text: str | None) -> dict[str, Any]:
    """Exclamation count (max 2), casing class and whether a modal verb is used."""
    t = text or ""
    exclam = min(t.count("!"), 2)
    words = t.split()
    is_lower = t == t.lower()
    capitalized = sum(1 for w in words if _CAPITALIZED_RE.match(w))
    titleish = len(words) > 2 and capitalized / len(words) > 0.6
    casing = "lower" if is_lower else "title" if titleish else "sentence"
    return {"exclam": exclam, "casing": casing, "used_modal": bool(_MODAL_RE.search(t))}


def _title_word(m: re.Match) -> str:
    w = m.group(0)
    return w[0].upper() + w[1:].lower()


def apply_style(text: str, style: dict[str, Any]) -> str:
    """Re-apply casing and trailing exclamation marks. Applying twice changes nothing."""
    out = text or ""
    casing = style.get("casing")
    if casing == "lower":
        out = out.lower()
    elif casing == "title":
        out = re.sub(r"\w\S*", _title_word, out)
    else:
        out = out[:1].upper() + out[1:]
    exclam = int(style.get("exclam") or 0)
    if exclam > 0:
        out = re.sub(r"[.!]+$", "", out) + "!" * exclam
    else:
        out = re.sub(r"!+$", "", out)
    return out


def _replace_tokens(text: str, terms: list[str], replacement_for) -> str:
    parts = _WORD_SPLIT_RE.split(text)
    for i, part in enumerate(parts):
        if _ALNUM_RE.fullmatch(part) and fuzzy_match_any(part, terms, 1):
            parts[i] = replacement_for(part)
    return "".join(parts)


def rewrite_medical(
    text: str | None,
    shared_medical: dict[str, Any] | None,
    rulebook: dict[str, Any] | None = None,
    neutral_noun: str | None = None,
) -> str:
    """Soften claim verbs, swap conditions for a neutral noun, keep the writer's style.

    Never returns an empty string: very short results become a fixed sentence.
    """
    style = detect_style(text or "")
    shared_medical = shared_medical if isinstance(shared_medical, dict) else {}
    verbs = [v for v in shared_medical.get("claim_verbs") or [] if isinstance(v, str)]
    diseases = [d for d in shared_medical.get("diseases") or [] if isinstance(d, str)]
    noun = ((rulebook or {}).get("rewrite") or {}).get("neutral_noun") or neutral_noun or DEFAULT_NEUTRAL_NOUN

    s = _norm_ws(text)
    # "cures" -> "supports", "cure" -> "supports"
    s = _replace_tokens(s, verbs, lambda tok: NEUTRAL_VERB)
    s = _replace_tokens(s, diseases, lambda tok: noun)

    for pattern, repl in _TIDY_RULES:
        s = pattern.sub(repl, s)

    if not style["used_modal"]:
        s = re.sub(r"\bsupports\b", "designed to support", s, flags=re.I)
    if len(s) < 15:
        s = SAFE_MEDICAL_SENTENCE

    return apply_style(s, style)


def _js_replacement(rep: str) -> str:
    """Rulebooks write replacements JS-style ($1, $&); translate to re.sub syntax."""
    rep = rep.replace("\\", "\\\\")
    rep = rep.replace("$&", r"\g<0>")
    return re.sub(r"\$(\d+)", r"\\g<\1>", rep)


def apply_category_rewrite(text: str | None, find: str, replace: str | None = None) -> str:
    """Global case-insensitive find/replace from a category's `rewrite` block."""
    text = text or ""
    try:
        pattern = re.compile(find, re.I)
    except re.error as e:
        _logger.warning("Invalid rewrite pattern %r: %s", find, e)
        return text
    try:
        return pattern.sub(_js_replacement("neutral" if replace is None else str(replace)), text)
    except (re.error, IndexError) as e:
        _logger.warning("Invalid rewrite replacement %r: %s", replace, e)
        return text


def degrade_to_neutral(original: str | None) -> str:
    """Drop the content, keep only the writer's casing and exclamation style."""
    return apply_style(SAFE_COMPLIANCE_SENTENCE, detect_style(original or ""))
