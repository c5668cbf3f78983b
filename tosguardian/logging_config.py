"""
Structured logging: one JSON object per line (default) or a readable single
line when LOG_PRETTY=1. Every line of one check carries the same request id.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_EXTRA_KEYS = ("platform", "level_result", "url", "duration_ms", "event", "category")


@contextmanager
def request_context() -> Iterator[str]:
    """
    Bind a fresh request id for the duration of the block.

    Usage:
        with request_context() as rid:
            ...
    The previous id (usually none) is restored on exit.
    """
    rid = str(uuid.uuid4())
    token = request_id_var.set(rid)
    try:
        yield rid
    finally:
        request_id_var.reset(token)


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: getattr(record, k) for k in _EXTRA_KEYS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    """{"t": ..., "level": "info", "logger": ..., "msg": ..., "request_id": ...}"""

    def format(self, record: logging.LogRecord) -> str:
        rec: dict[str, Any] = {
            "t": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = request_id_var.get()
        if rid:
            rec["request_id"] = rid
        rec.update(_extras(record))
        if record.exc_info:
            rec["exception"] = self.formatException(record.exc_info)
        return json.dumps(rec, default=str)


class PrettyFormatter(logging.Formatter):
    """2025-08-10T12:34:56.789Z INFO rulebook loaded {"platform": "etsy"}"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        rest = _extras(record)
        rid = request_id_var.get()
        if rid:
            rest["request_id"] = rid
        line = f"{ts} {record.levelname} {record.getMessage()}"
        if rest:
            line += f" {json.dumps(rest, default=str)}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    root = logging.getLogger()
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    root.setLevel(lvl)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JSONFormatter() if json_format else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("httpx", "httpcore", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def configure_from_settings(settings: dict[str, Any]) -> None:
    cfg = settings.get("logging") or {}
    configure_logging(json_format=bool(cfg.get("json", True)), level=cfg.get("level", "INFO"))
