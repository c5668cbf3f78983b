"""
Golden-case batch runs: a table of (platform, text, expected level) checked
through the pipeline with image scanning and the model step turned off.
"""
from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from .config import deep_merge, get_settings
from .pipeline import run_check
from .scoring import Level

_logger = logging.getLogger(__name__)

CAPTION_PLATFORMS = ("tiktok", "instagram", "facebook", "x", "linkedin", "snapchat")
PLACEHOLDER_TITLE = "Test"


def normalize_case_columns(df: pd.DataFrame) -> pd.DataFrame:
    col_map = {
        "platform": "platform",
        "text": "text", "content": "text", "post": "text",
        "expect": "expect", "expected": "expect", "expected level": "expect", "expected_level": "expect",
        "field": "field",
        "strict": "strict_mode", "strict mode": "strict_mode", "strict_mode": "strict_mode",
        "scan images": "scan_images", "scan_images": "scan_images",
    }
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    new_cols = {c: col_map[c] for c in df.columns if c in col_map}
    new_cols.update({c: col_map[c.replace("_", " ")] for c in df.columns if c not in new_cols and c.replace("_", " ") in col_map})
    if new_cols:
        df = df.rename(columns=new_cols)
    return df


def _truthy(x: Any) -> bool:
    if x is None or (not isinstance(x, str) and pd.isna(x)):
        return False
    return str(x).strip().lower() in ("1", "true", "yes", "y")


def case_fields(platform: str, text: str, field: str | None = None) -> dict[str, Any]:
    """The platform's usual primary field, or an explicit one."""
    if field:
        return {field: text}
    if platform in CAPTION_PLATFORMS:
        return {"caption": text}
    return {"description": text, "title": PLACEHOLDER_TITLE}


def _row_to_case(row: pd.Series) -> dict[str, Any]:
    def v(key, default=""):
        if key not in row:
            return default
        x = row[key]
        if not isinstance(x, str) and pd.isna(x):
            return default
        return str(x).strip()

    return {
        "platform": v("platform").lower(),
        "text": v("text"),
        "expect": v("expect", "green").lower(),
        "field": v("field") or None,
        "strict_mode": _truthy(row.get("strict_mode")),
    }


def run_golden(df: pd.DataFrame, settings: dict[str, Any] | None = None) -> pd.DataFrame:
    """Check every case. A case passes when the verdict is at least as strict as expected."""
    df = normalize_case_columns(df)
    missing = [c for c in ("platform", "text", "expect") if c not in df.columns]
    if missing:
        raise ValueError(f"golden cases missing column(s): {', '.join(missing)}")

    rows = []
    for _, row in df.iterrows():
        case = _row_to_case(row)
        p = case["platform"]
        cfg = deep_merge(settings or get_settings(p), {"model": {"enabled": False}})
        expected = Level.parse(case["expect"])
        try:
            verdict = run_check(p, case_fields(p, case["text"], case["field"]),
                                strict_mode=case["strict_mode"], scan_images=False, settings=cfg)
            got = Level.parse(verdict["level"])
            issues = verdict["issues"]
            error = ""
        except Exception as e:
            _logger.exception("Golden case failed", extra={"platform": p})
            got, issues, error = None, [], str(e)
        passed = got is not None and expected is not None and got >= expected
        rows.append({
            "platform": p,
            "text": case["text"],
            "expect": case["expect"],
            "got": str(got) if got is not None else "error",
            "passed": passed,
            "issues": "; ".join(issues),
            "error": error,
        })
    return pd.DataFrame(rows, columns=["platform", "text", "expect", "got", "passed", "issues", "error"])
