"""
Check post fields against a platform rulebook. Returns
{ issues: [str], fixes: [{field, suggestion}], high: bool }.

Order of checks: limits, destination link, then every category (platform
categories first, global categories after).
"""
from __future__ import annotations

import logging
import re
from typing import Any

from ..config import get_settings
from ..rewrite import apply_category_rewrite, rewrite_medical
from .proximity import verb_near_noun
from .store import load_rulebook, load_shared, merge_global, resolve_patterns_ref

_logger = logging.getLogger(__name__)

PRIMARY_FIELDS = ("description", "caption", "title")
_WEB_URL_RE = re.compile(r"^https?://", re.I)
_HASHTAG_SPLIT_RE = re.compile(r"[#\s,]+")
_JS_FLAGS = {"i": re.I, "m": re.M, "s": re.S, "x": re.X}


def build_search_text(fields: dict[str, Any]) -> str:
    """All top-level string values, in key order, space-joined."""
    return " ".join(v for v in fields.values() if isinstance(v, str))


def primary_text_field(fields: dict[str, Any]) -> str | None:
    for key in PRIMARY_FIELDS:
        if isinstance(fields.get(key), str):
            return key
    return None


def _is_medical_ref(ref: Any, settings: dict[str, Any]) -> bool:
    fragment = (settings.get("medical") or {}).get("fragment") or "shared.medical.json"
    return isinstance(ref, str) and re.search(re.escape(fragment), ref, re.I) is not None


def _flags_from(flags: Any) -> int:
    out = 0
    for ch in str(flags or ""):
        out |= _JS_FLAGS.get(ch, 0)
    return out


def _compile_patterns(cat: dict[str, Any], settings: dict[str, Any]) -> list[re.Pattern]:
    """patterns_ref phrases match literally; inline patterns are regex sources."""
    cid = cat.get("id") or cat.get("label") or "?"
    compiled: list[re.Pattern] = []
    for phrase in resolve_patterns_ref(cat.get("patterns_ref"), settings):
        if isinstance(phrase, str) and phrase:
            compiled.append(re.compile(re.escape(phrase), re.I))

    for entry in cat.get("patterns") or []:
        if isinstance(entry, str):
            source, flags = entry, re.I
        elif isinstance(entry, dict) and isinstance(entry.get("pattern"), str):
            source, flags = entry["pattern"], _flags_from(entry.get("flags"))
        else:
            continue
        if not source:
            continue
        try:
            compiled.append(re.compile(source, flags))
        except re.error as e:
            _logger.warning("Skipping invalid pattern %r in category %s: %s", source, cid, e,
                            extra={"category": cid})
    return compiled


def prepare_rulebook(rulebook: dict[str, Any], settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """Compile every category once. Invalid patterns are dropped with a warning."""
    settings = settings or get_settings()
    prepared = []
    for cat in rulebook.get("categories") or []:
        if not isinstance(cat, dict):
            continue
        medical = _is_medical_ref(cat.get("patterns_ref"), settings)
        prepared.append({
            "category": cat,
            "medical": medical,
            "patterns": [] if medical else _compile_patterns(cat, settings),
        })
    return prepared


def _add_issue(issues: list[str], label: str) -> None:
    if label not in issues:
        issues.append(label)


def _count_list(value: Any, splitter) -> list[str]:
    if isinstance(value, str):
        return [s.strip() for s in splitter(value) if s.strip()]
    if isinstance(value, (list, tuple)):
        return [str(s).strip() for s in value if isinstance(s, (str, int, float)) and str(s).strip()]
    return []


def _rules_limits(fields: dict[str, Any], rulebook: dict[str, Any]) -> tuple[list[str], list[dict]]:
    issues: list[str] = []
    fixes: list[dict] = []
    limits = rulebook.get("limits") or {}

    for key, limit_key in (("title", "title_max"), ("description", "description_max"), ("caption", "caption_max")):
        limit = limits.get(limit_key)
        value = fields.get(key)
        if limit and isinstance(value, str) and value and len(value) > limit:
            issues.append(f"{key.capitalize()} exceeds {limit} characters.")
            fixes.append({"field": key, "suggestion": value[:limit]})

    tags_max = limits.get("tags_max_count")
    tags = _count_list(fields.get("tags"), lambda s: s.split(","))
    if tags_max and len(tags) > tags_max:
        issues.append(f"Tags exceed {tags_max} allowed.")
        fixes.append({"field": "tags", "suggestion": ",".join(tags[:tags_max])})

    hashtags_max = limits.get("hashtags_max_count")
    hashtags = _count_list(fields.get("hashtags"), _HASHTAG_SPLIT_RE.split)
    if hashtags_max and len(hashtags) > hashtags_max:
        issues.append(f"Hashtags exceed {hashtags_max} allowed.")
        fixes.append({"field": "hashtags", "suggestion": " ".join(f"#{h.lstrip('#')}" for h in hashtags[:hashtags_max])})

    return issues, fixes


def _link_value(fields: dict[str, Any]) -> str:
    link = fields.get("link")
    return link.strip() if isinstance(link, str) else ""


def _rules_link(platform: str, fields: dict[str, Any], settings: dict[str, Any]) -> list[str]:
    link = _link_value(fields)
    if link and platform in (settings.get("link_platforms") or []) and not _WEB_URL_RE.match(link):
        return ["Destination URL should start with http(s)://"]
    return []


def _rules_categories(
    fields: dict[str, Any],
    rulebook: dict[str, Any],
    prepared: list[dict[str, Any]],
    settings: dict[str, Any],
) -> tuple[list[str], list[dict], bool]:
    issues: list[str] = []
    fixes: list[dict] = []
    high = False

    searchable = build_search_text(fields)
    main_key = primary_text_field(fields)
    main_text = fields.get(main_key, "") if main_key else ""
    link = _link_value(fields)
    med_cfg = settings.get("medical") or {}
    shared_med: Any = None

    def _propose(suggestion: str) -> None:
        if main_key and suggestion and suggestion != main_text:
            fixes.append({"field": main_key, "suggestion": suggestion})

    for entry in prepared:
        cat = entry["category"]
        cid = cat.get("id") or cat.get("label")
        is_high = cat.get("severity") == "high"

        if entry["medical"]:
            if shared_med is None:
                shared_med = load_shared(med_cfg.get("fragment") or "shared.medical.json", settings) or {}
            verbs = list(shared_med.get("claim_verbs") or []) + list(med_cfg.get("extra_verbs") or [])
            diseases = list(shared_med.get("diseases") or [])
            if verb_near_noun(searchable, verbs, diseases,
                              window=int(med_cfg.get("window", 6)),
                              max_edits=int(med_cfg.get("max_edits", 1))):
                _logger.debug("medical claim detected", extra={"category": cid})
                high = high or is_high
                _add_issue(issues, cat.get("label") or "Medical / Health Claims detected.")
                _propose(rewrite_medical(main_text, shared_med, rulebook, med_cfg.get("neutral_noun")))
            continue

        if any(p.search(searchable) for p in entry["patterns"]):
            _logger.debug("category matched", extra={"category": cid})
            high = high or is_high
            _add_issue(issues, cat.get("label") or "Policy issue detected.")
            rw = cat.get("rewrite") or {}
            if rw.get("find"):
                _propose(apply_category_rewrite(main_text, rw["find"], rw.get("replace")))

        if "url_scheme_http_https" in (cat.get("checks") or []) and link and not _WEB_URL_RE.match(link):
            high = high or is_high
            _add_issue(issues, cat.get("label") or "Link policy issue.")

    return issues, fixes, high


def check_with_rulebook(
    platform: str,
    fields: dict[str, Any],
    rulebook: dict[str, Any],
    settings: dict[str, Any] | None = None,
    prepared: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings(platform)
    if prepared is None:
        prepared = prepare_rulebook(rulebook, settings)

    issues, fixes = _rules_limits(fields, rulebook)
    issues.extend(_rules_link(platform, fields, settings))
    cat_issues, cat_fixes, high = _rules_categories(fields, rulebook, prepared, settings)
    for label in cat_issues:
        _add_issue(issues, label)
    fixes.extend(cat_fixes)
    return {"issues": issues, "fixes": fixes, "high": high}


def run_checks(platform: str, fields: dict[str, Any], settings: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load the platform rulebook, merge global categories, check fields.

    A missing rulebook is reported as a single high-severity issue.
    """
    p = str(platform or "").strip().lower()
    settings = settings or get_settings(p)
    rb = load_rulebook(p, settings)
    if rb is None:
        _logger.warning("No rulebook found", extra={"platform": p})
        return {"issues": [f"No rulebook found for {p}"], "fixes": [], "high": True, "rulebook": None}
    rb = merge_global(rb, settings)
    result = check_with_rulebook(p, fields, rb, settings)
    result["rulebook"] = rb
    return result
