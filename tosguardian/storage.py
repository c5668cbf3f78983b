"""
Local JSON receipts: one file per check, never rewritten. Works offline.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings, resolve_path

_logger = logging.getLogger(__name__)

# Image payloads can be large data URLs; receipts keep only the text fields.
_SNAPSHOT_DROP = ("image", "images", "thumb", "thumbnail", "media", "photo", "cover")


def receipts_dir(settings: dict[str, Any] | None = None) -> Path:
    settings = settings or get_settings()
    return resolve_path(settings.get("receipts_dir") or "data/receipts")


def fields_snapshot(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if str(k).lower() not in _SNAPSHOT_DROP}


def build_receipt(
    platform: str,
    fields: dict[str, Any],
    verdict: dict[str, Any],
    rulebook_version: str | None,
    strict_mode: bool,
) -> dict[str, Any]:
    model = verdict.get("model")
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "platform": platform,
        "level": verdict.get("level"),
        "issues": list(verdict.get("issues") or []),
        "fixesCount": len(verdict.get("fixes") or []),
        "imageFindingsCount": len(verdict.get("imageFindings") or []),
        "rulebookVersion": rulebook_version or "unknown",
        "fieldsSnapshot": fields_snapshot(fields),
        "model": {"name": model.get("name"), "label": model.get("label"), "hadError": bool(model.get("error"))}
        if model else None,
        "strictMode": bool(strict_mode),
    }


def save_receipt(platform: str, payload: dict[str, Any], settings: dict[str, Any] | None = None) -> Path:
    """Write payload as receipt-<platform>-<ts>-<id>.json; returns the file path."""
    d = receipts_dir(settings)
    d.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    safe_platform = "".join(c for c in str(platform).lower() if c.isalnum()) or "unknown"
    path = d / f"receipt-{safe_platform}-{ts}-{uuid.uuid4().hex[:8]}.json"
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path


def load_receipts(limit: int | None = None, settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """Stored receipts, newest first. Unreadable files are skipped."""
    d = receipts_dir(settings)
    if not d.is_dir():
        return []
    out: list[dict[str, Any]] = []
    for path in d.glob("receipt-*.json"):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            _logger.warning("Skipping unreadable receipt %s: %s", path.name, e)
            continue
        if isinstance(data, dict):
            out.append(data)
    out.sort(key=lambda r: str(r.get("timestamp") or ""), reverse=True)
    return out if limit is None else out[:limit]
