"""
Rulebook store: per-platform `<platform>.v1.json` rulebooks plus shared JSON
fragments (`shared.*.json`), read from the rules directory on every call.
"""
from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from ..config import get_settings, resolve_path

_logger = logging.getLogger(__name__)

SEVERITIES = ("high", "medium")
_LIMIT_KEYS = ("title_max", "description_max", "caption_max", "tags_max_count", "hashtags_max_count")


class RulebookError(Exception):
    """A rulebook file failed structural validation."""


def rules_dir(settings: dict[str, Any] | None = None) -> Path:
    settings = settings or get_settings()
    return resolve_path(settings.get("rules_dir") or "rules")


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        _logger.warning("Unreadable rules file %s: %s", path.name, e)
        return None


def load_rulebook(platform: str, settings: dict[str, Any] | None = None) -> dict[str, Any] | None:
    p = str(platform or "").strip().lower()
    if not p or "/" in p or "\\" in p or p.startswith("."):
        return None
    rb = _read_json(rules_dir(settings) / f"{p}.v1.json")
    return rb if isinstance(rb, dict) else None


def load_shared(name: str, settings: dict[str, Any] | None = None) -> Any:
    """Shared fragment by exact file name; None when missing."""
    if not name or "/" in name or "\\" in name:
        return None
    return _read_json(rules_dir(settings) / name)


def resolve_patterns_ref(ref: str | None, settings: dict[str, Any] | None = None) -> list[Any]:
    """`file` or `file#section` -> list of entries (empty when anything is missing)."""
    if not ref:
        return []
    file, _, section = str(ref).partition("#")
    data = load_shared(file, settings)
    if data is None:
        return []
    if section:
        val = data.get(section) if isinstance(data, dict) else None
        return list(val) if isinstance(val, list) else []
    if isinstance(data, list):
        return list(data)
    if isinstance(data, dict):
        if isinstance(data.get("phrases"), list):
            return list(data["phrases"])
        return next((list(v) for v in data.values() if isinstance(v, list)), [])
    return []


def merge_global(rulebook: dict[str, Any], settings: dict[str, Any] | None = None) -> dict[str, Any]:
    """Copy of rulebook with the shared global categories appended after its own."""
    settings = settings or get_settings()
    merged = copy.deepcopy(rulebook)
    global_rules = load_shared(settings.get("global_fragment") or "shared.global.json", settings)
    if isinstance(global_rules, dict) and isinstance(global_rules.get("categories"), list):
        merged["categories"] = list(merged.get("categories") or []) + copy.deepcopy(global_rules["categories"])
    return merged


def list_platforms(settings: dict[str, Any] | None = None) -> list[str]:
    d = rules_dir(settings)
    if not d.is_dir():
        return []
    return sorted(p.name[: -len(".v1.json")] for p in d.glob("*.v1.json"))


def validate_rulebook(rb: Any) -> list[str]:
    """Structural problems in a platform rulebook; empty list when valid."""
    if not isinstance(rb, dict):
        return ["rulebook must be a JSON object"]
    errors: list[str] = []
    if not isinstance(rb.get("platform"), str) or not rb.get("platform"):
        errors.append("platform must be a non-empty string")
    if not rb.get("version"):
        errors.append("version is required")

    limits = rb.get("limits") or {}
    if not isinstance(limits, dict):
        errors.append("limits must be an object")
    else:
        for key in _LIMIT_KEYS:
            val = limits.get(key)
            if val is not None and (not isinstance(val, int) or isinstance(val, bool) or val <= 0):
                errors.append(f"limits.{key} must be a positive integer")

    cats = rb.get("categories")
    if not isinstance(cats, list):
        errors.append("categories must be an array")
        return errors
    seen: set[str] = set()
    for i, cat in enumerate(cats):
        where = f"categories[{i}]"
        if not isinstance(cat, dict):
            errors.append(f"{where} must be an object")
            continue
        cid = cat.get("id")
        if not cid:
            errors.append(f"{where}.id is required")
        elif cid in seen:
            errors.append(f"{where}.id '{cid}' is duplicated")
        else:
            seen.add(cid)
        if not cat.get("label"):
            errors.append(f"{where}.label is required")
        if cat.get("severity") not in SEVERITIES:
            errors.append(f"{where}.severity must be one of {', '.join(SEVERITIES)}")
        if not (cat.get("patterns_ref") or cat.get("patterns") or cat.get("checks")):
            errors.append(f"{where} needs patterns_ref, patterns or checks")
        rw = cat.get("rewrite")
        if rw is not None and (not isinstance(rw, dict) or not rw.get("find")):
            errors.append(f"{where}.rewrite needs a find pattern")
    return errors


def check_rulebook(rb: Any, name: str = "rulebook") -> None:
    """Raise RulebookError listing every problem found by validate_rulebook."""
    errors = validate_rulebook(rb)
    if errors:
        raise RulebookError(f"{name}: " + "; ".join(errors))
