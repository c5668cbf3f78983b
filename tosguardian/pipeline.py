"""
Single pipeline: post fields -> rulebook checks -> image heuristics ->
re-check of the suggested fix -> optional local model -> verdict.
"""
from __future__ import annotations

import logging
import time
from typing import Any

from . import images
from .config import get_settings
from .logging_config import request_context
from .model import ModelError, build_model_prompt, call_model, parse_model_output
from .rewrite import degrade_to_neutral
from .rules.engine import primary_text_field, run_checks
from .scoring import Level, compute_level, summarize_findings
from .storage import build_receipt, save_receipt

_logger = logging.getLogger(__name__)


def _recheck(
    platform: str,
    fields: dict[str, Any],
    key: str,
    text: str,
    settings: dict[str, Any],
    image_issues: list[str],
    image_high: bool,
) -> tuple[Level, list[str]]:
    """Level and issues with one field replaced. Image findings of the request still count."""
    result = run_checks(platform, {**fields, key: text}, settings)
    issues = list(result["issues"]) + [i for i in image_issues if i not in result["issues"]]
    return compute_level(issues, result["high"] or image_high), issues


def _evaluate(
    platform: str,
    fields: dict[str, Any],
    strict_mode: bool,
    scan_images: bool | None,
    settings: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, Any] | None]:
    base = run_checks(platform, fields, settings)
    issues: list[str] = list(base["issues"])
    fixes: list[dict[str, Any]] = list(base["fixes"])
    high: bool = base["high"]
    rulebook = base["rulebook"]

    img_cfg = settings.get("images") or {}
    do_images = img_cfg.get("enabled", True) if scan_images is None else bool(scan_images)
    findings: list[dict[str, Any]] = []
    if do_images:
        try:
            findings = images.scan_images(fields, settings, enabled=True)
        except Exception:
            _logger.exception("Image scan failed", extra={"platform": platform})
            findings = []
    image_issues = [f"{f['label']} ({f['url']})" for f in findings]
    image_level, counts = summarize_findings(findings)
    image_high = image_level == Level.RED
    if findings:
        _logger.debug("image findings: %d high, %d medium", counts["high"], counts["medium"],
                      extra={"platform": platform})
    issues.extend(i for i in image_issues if i not in issues)
    high = high or image_high
    level = compute_level(issues, high)

    main = primary_text_field(fields)
    suggested = next((f for f in fixes if main and f["field"] == main and f.get("suggestion")), None)
    if suggested:
        second_level, second_issues = _recheck(platform, fields, main, suggested["suggestion"],
                                               settings, image_issues, image_high)
        if strict_mode and second_level <= level:
            level, issues = second_level, second_issues

    model = None
    model_cfg = settings.get("model") or {}
    if level != Level.GREEN and model_cfg.get("enabled", True) and rulebook is not None:
        name = model_cfg.get("display_name") or model_cfg.get("name")
        try:
            output = call_model(build_model_prompt(platform, fields, rulebook), settings)
            parsed = parse_model_output(output)
            rewrite = parsed["rewrite"]
            if rewrite:
                re_level, re_issues = _recheck(platform, fields, main or "description", rewrite,
                                               settings, image_issues, image_high)
                final = rewrite
                if strict_mode and re_level != Level.GREEN:
                    final = degrade_to_neutral(rewrite)
                model = {"name": name, "label": parsed["label"], "rewrite": final}
                if strict_mode:
                    if re_level < level:
                        level, issues = re_level, re_issues
                elif main and final:
                    fixes.append({"field": main, "suggestion": final, "source": "model"})
            else:
                model = {"name": name, "label": parsed["label"], "rewrite": None}
        except ModelError as e:
            _logger.warning("Model step failed: %s", e, extra={"platform": platform})
            model = {"name": name, "error": str(e)}
        except Exception as e:
            _logger.exception("Model step crashed", extra={"platform": platform})
            model = {"name": name, "error": str(e)}

    verdict = {
        "level": str(level),
        "issues": issues,
        "fixes": fixes,
        "imageFindings": findings,
        "model": model,
    }
    return verdict, rulebook


def _timed_evaluate(
    platform: str,
    fields: dict[str, Any],
    strict_mode: bool,
    scan_images: bool | None,
    settings: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, Any] | None]:
    start = time.perf_counter()
    verdict, rulebook = _evaluate(platform, fields, strict_mode, scan_images, settings)
    _logger.info(
        "Check complete",
        extra={"platform": platform, "level_result": verdict["level"],
               "duration_ms": round((time.perf_counter() - start) * 1000, 1)},
    )
    return verdict, rulebook


def run_check(
    platform: str,
    fields: dict[str, Any],
    strict_mode: bool = False,
    scan_images: bool | None = None,
    settings: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    platform: rulebook name (etsy, tiktok, x, ...), case-insensitive
    fields: title, description, caption, link, tags, hashtags, image/media in any shape
    scan_images: None follows `images.enabled`; True/False overrides it
    Returns: {
        "level": "green" | "yellow" | "red",
        "issues": [str],
        "fixes": [{"field", "suggestion", "source"?}],
        "imageFindings": [{"url", "severity", "label"}],
        "model": None | {"name", "label", "rewrite"} | {"name", "error"},
    }
    """
    p = str(platform or "").strip().lower()
    settings = settings or get_settings(p)
    verdict, _ = _timed_evaluate(p, fields, strict_mode, scan_images, settings)
    return verdict


def handle_check(body: Any, settings: dict[str, Any] | None = None) -> tuple[int, dict[str, Any]]:
    """Transport-agnostic boundary: request body -> (HTTP status, JSON payload)."""
    body = body if isinstance(body, dict) else {}
    platform = body.get("platform")
    fields = body.get("fields")
    if not platform or not isinstance(platform, str) or not isinstance(fields, dict):
        return 400, {"error": "Missing platform or fields"}

    p = platform.strip().lower()
    strict_mode = body.get("strictMode") is True
    scan = body.get("scanImages")
    with request_context():
        try:
            settings = settings or get_settings(p)
            verdict, rulebook = _timed_evaluate(p, fields, strict_mode,
                                                scan if isinstance(scan, bool) else None, settings)
        except Exception:
            _logger.exception("Check failed", extra={"platform": p})
            return 500, {"error": "Server error"}

        save = body.get("saveReceipts")
        if save if isinstance(save, bool) else settings.get("save_receipts", True):
            try:
                receipt = build_receipt(p, fields, verdict, (rulebook or {}).get("version"), strict_mode)
                save_receipt(p, receipt, settings)
            except (OSError, TypeError, ValueError) as e:
                _logger.warning("Could not save receipt: %s", e, extra={"platform": p})
    return 200, verdict
