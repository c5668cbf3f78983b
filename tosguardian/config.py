"""
Settings: config/settings.yaml, optionally deep-merged with the file named by
TOSGUARDIAN_CONFIG, then with the `platforms.<name>` block for one platform.
"""
from __future__ import annotations

import copy
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SETTINGS_PATH = PROJECT_ROOT / "config" / "settings.yaml"

_DEFAULTS: dict[str, Any] = {
    "rules_dir": "rules",
    "receipts_dir": "data/receipts",
    "save_receipts": True,
    "global_fragment": "shared.global.json",
    "link_platforms": [],
    "medical": {
        "fragment": "shared.medical.json",
        "extra_verbs": ["fdaapproved", "fdacleared"],
        "window": 6,
        "max_edits": 1,
        "neutral_noun": "overall wellness",
    },
    "images": {
        "enabled": True,
        "fetch": True,
        "timeout_s": 5.0,
        "max_bytes": 10 * 1024 * 1024,
        "min_width": 32,
        "min_height": 32,
        "min_aspect": 0.2,
        "max_aspect": 5.0,
        "min_bytes": 64,
        "counterfeit_severity": "high",
        "hint_keys": ["image", "img", "thumb", "thumbnail", "media", "photo", "picture", "cover", "banner"],
        "terms": {},
    },
    "model": {
        "enabled": True,
        "endpoint": "http://localhost:11434/api/generate",
        "name": "llama3.1:8b",
        "display_name": "Llama 3.1 (local)",
        "timeout_s": 2.5,
    },
    "logging": {"level": "INFO", "json": True},
    "platforms": {},
}


def deep_merge(base: Any, override: Any) -> Any:
    """Merge override into base without mutating either.

    Mappings merge per key, a non-empty list replaces the base list (an empty
    one keeps it), anything else replaces unless it is None.
    """
    if isinstance(base, list) and isinstance(override, list):
        return list(override) if override else list(base)
    if isinstance(base, dict) and isinstance(override, dict):
        out = copy.deepcopy(base)
        for k, v in override.items():
            out[k] = deep_merge(base.get(k), v)
        return out
    if override is None:
        return copy.deepcopy(base)
    return copy.deepcopy(override)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not hold a mapping")
    return data


@lru_cache(maxsize=1)
def _load_base() -> dict[str, Any]:
    settings = copy.deepcopy(_DEFAULTS)
    if _SETTINGS_PATH.exists():
        settings = deep_merge(settings, _read_yaml(_SETTINGS_PATH))

    override_file = os.environ.get("TOSGUARDIAN_CONFIG")
    if override_file:
        try:
            settings = deep_merge(settings, _read_yaml(Path(override_file)))
        except (OSError, ValueError, yaml.YAMLError) as e:
            _logger.warning("Could not read override file %s: %s", override_file, e)

    log_cfg = settings.setdefault("logging", {})
    if os.environ.get("LOG_LEVEL"):
        log_cfg["level"] = os.environ["LOG_LEVEL"].upper()
    if os.environ.get("LOG_PRETTY") == "1":
        log_cfg["json"] = False
    return settings


def get_settings(platform: str | None = None) -> dict[str, Any]:
    """Settings for one platform (or the base settings). Returns a fresh copy."""
    base = _load_base()
    if not platform:
        return copy.deepcopy(base)
    specific = (base.get("platforms") or {}).get(str(platform).lower()) or {}
    return deep_merge(base, specific)


def reload_settings() -> None:
    """Drop cached settings so the next get_settings() re-reads the files."""
    _load_base.cache_clear()


def resolve_path(value: str | os.PathLike) -> Path:
    """Relative paths in settings are relative to the project root."""
    p = Path(value)
    return p if p.is_absolute() else PROJECT_ROOT / p
