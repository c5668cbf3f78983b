"""
Optional second opinion from a local text-generation endpoint (Ollama API).
The model answers with a label and one rewritten line.
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

import httpx

from .config import get_settings

_logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"Label:\s*(green|yellow|red)", re.I)
_REWRITE_RE = re.compile(r"Rewrite:\s*(.*)$", re.I | re.S)

PROMPT_TEMPLATE = """You are a TOS compliance checker for {platform}.
Rules (JSON):
{rules}

Task:
1) Classify the content as "green" (safe), "yellow" (borderline), or "red" (violation).
2) Provide a single rewritten version that preserves the original tone but is fully compliant with the rules.

Strict format (exactly):
Label: <green|yellow|red>
Rewrite: <one safe line>

Content:
{content}"""


class ModelError(Exception):
    """The model endpoint failed, timed out or returned something unusable."""


def build_model_prompt(platform: str, fields: dict[str, Any], rulebook: dict[str, Any]) -> str:
    content = "\n".join(v for v in fields.values() if isinstance(v, str) and v.strip())
    rules = json.dumps(rulebook, indent=2, ensure_ascii=False, default=str)
    return PROMPT_TEMPLATE.format(platform=platform, rules=rules, content=content).strip()


def call_model(prompt: str, settings: dict[str, Any] | None = None) -> str:
    """POST the prompt to the configured endpoint; returns the response text.

    `model.timeout_s` bounds each network operation and the whole call.
    """
    settings = settings or get_settings()
    cfg = settings.get("model") or {}
    timeout = float(cfg.get("timeout_s") or 2.5)
    payload = {"model": cfg.get("name") or "llama3.1:8b", "prompt": prompt, "stream": False}
    deadline = time.monotonic() + timeout
    try:
        with httpx.Client(timeout=timeout) as client:
            endpoint = cfg.get("endpoint") or "http://localhost:11434/api/generate"
            with client.stream("POST", endpoint, json=payload) as resp:
                resp.raise_for_status()
                body = bytearray()
                for chunk in resp.iter_bytes():
                    body.extend(chunk)
                    if time.monotonic() > deadline:
                        raise ModelError("model timeout")
        data = json.loads(bytes(body))
    except httpx.TimeoutException as e:
        raise ModelError("model timeout") from e
    except httpx.HTTPStatusError as e:
        raise ModelError(f"model HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise ModelError(f"model unreachable: {e}") from e
    except ValueError as e:
        raise ModelError("model returned invalid JSON") from e

    text = data.get("response") if isinstance(data, dict) else None
    return str(text).strip() if text else ""


def parse_model_output(text: str | None) -> dict[str, Any]:
    """{"label": green|yellow|red|unknown, "rewrite": str | None}"""
    text = text or ""
    label = _LABEL_RE.search(text)
    rewrite = _REWRITE_RE.search(text)
    return {
        "label": label.group(1).lower() if label else "unknown",
        "rewrite": (rewrite.group(1).strip() or None) if rewrite else None,
    }
