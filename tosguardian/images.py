"""
Image heuristics: find image references anywhere in the post fields, flag
risky URL tokens, then fetch the bytes and sniff them with Pillow.
Nothing here looks at pixels beyond format and dimensions.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from .config import get_settings

_logger = logging.getLogger(__name__)

_EXT_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".avif": "image/avif",
    ".heic": "image/heic",
    ".svg": "image/svg+xml",
}
IMAGE_EXTS = tuple(_EXT_MIME)
SVG_MIME = "image/svg+xml"

_WEB_URL_RE = re.compile(r"^https?://\S+$", re.I)
_DATA_URL_RE = re.compile(r"data:image/[a-z0-9.+-]+;base64,[a-z0-9+/=]+", re.I)
_URL_IN_TEXT_RE = re.compile(r"https?://[^\s\"'<>]+", re.I)
_KEY_PART_RE = re.compile(r"[a-z0-9]+|[A-Z][a-z0-9]*")
_URL_KEYS = ("url", "src", "href")
_MAX_DEPTH = 32

# (category, label, default severity)
_TOKEN_RULES = (
    ("nsfw", "Image flagged: NSFW/Adult content hint", "high"),
    ("violence", "Image flagged: Violence/Gore hint", "high"),
    ("counterfeit", "Image flagged: Counterfeit/Replica hint", "high"),
    ("qr", "Image flagged: QR code / scan-bait", "medium"),
)
_DEFAULT_TERMS = {
    "nsfw": ["nsfw", "onlyfans", "porn", "xxx", "explicit", "adult"],
    "violence": ["gore", "blood", "beheading", "decap", "dismember"],
    "counterfeit": ["replica", "counterfeit", "knockoff", "super copy", "1:1", "1-1"],
    "qr": ["qr", "qrcode", "scan me"],
}

LABEL_FETCH_FAILED = "Image fetch failed (non-blocking)"
LABEL_UNDECODABLE = "Image could not be decoded (manual review)"


class ImageFetchError(Exception):
    """Download or decode of one image reference failed."""


def is_data_url(ref: str) -> bool:
    return ref[:11].lower() == "data:image/"


def url_extension(url: str) -> str:
    if is_data_url(url):
        return ""
    path = unquote(urlparse(url).path).lower()
    return Path(path).suffix


def has_image_extension(url: str) -> bool:
    return url_extension(url) in _EXT_MIME


def display_url(ref: str, max_len: int = 48) -> str:
    """Data URLs are cut down to their header and a few payload characters."""
    if is_data_url(ref) and len(ref) > max_len:
        return ref[:max_len] + "..."
    return ref


def _is_hint_key(key: Any, hint_keys: list[str]) -> bool:
    if not isinstance(key, str) or not key:
        return False
    if key.isupper():
        key = key.lower()
    parts = [p.lower() for p in _KEY_PART_RE.findall(key)]
    return any(part == h or part == h + "s" for part in parts for h in hint_keys)


def _clean_embedded(url: str) -> str:
    return url.rstrip(".,;:!?)]}")


def extract_image_urls(fields: Any, hint_keys: list[str] | None = None) -> list[str]:
    """Every image reference in an arbitrarily nested structure, de-duplicated, in discovery order."""
    if hint_keys is None:
        hint_keys = get_settings()["images"].get("hint_keys") or []
    hint_keys = [h.lower() for h in hint_keys if isinstance(h, str) and h]
    found: dict[str, None] = {}
    seen: set[int] = set()

    def _add(url: str) -> None:
        if url:
            found.setdefault(url, None)

    def _walk_str(s: str, key: Any) -> None:
        s = s.strip()
        if is_data_url(s) and _DATA_URL_RE.fullmatch(s):
            _add(s)
            return
        if _WEB_URL_RE.match(s):
            if has_image_extension(s) or _is_hint_key(key, hint_keys):
                _add(s)
            return
        for m in _DATA_URL_RE.finditer(s):
            _add(m.group(0))
        for m in _URL_IN_TEXT_RE.finditer(s):
            url = _clean_embedded(m.group(0))
            if has_image_extension(url):
                _add(url)

    def _walk(value: Any, key: Any, depth: int) -> None:
        if depth > _MAX_DEPTH:
            return
        if isinstance(value, str):
            _walk_str(value, key)
        elif isinstance(value, dict):
            if id(value) in seen:
                return
            seen.add(id(value))
            for k in _URL_KEYS:
                v = value.get(k)
                if isinstance(v, str) and _WEB_URL_RE.match(v.strip()):
                    v = v.strip()
                    if has_image_extension(v) or _is_hint_key(key, hint_keys):
                        _add(v)
            for k, v in value.items():
                _walk(v, k, depth + 1)
        elif isinstance(value, (list, tuple)):
            if id(value) in seen:
                return
            seen.add(id(value))
            for item in value:
                _walk(item, key, depth + 1)

    _walk(fields, None, 0)
    return list(found)


def _term_regex(term: str) -> re.Pattern:
    parts = [re.escape(p) for p in term.lower().split()]
    body = r"[\s_\-+]?".join(parts)
    return re.compile(rf"(?<![a-z0-9]){body}(?![a-z0-9])")


def url_token_findings(url: str, settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """Risk tokens in the URL itself, one finding per category. No network access."""
    settings = settings or get_settings()
    cfg = settings.get("images") or {}
    terms = {**_DEFAULT_TERMS, **(cfg.get("terms") or {})}
    # Only the header of a data URL is meaningful; the payload is random base64.
    haystack = url.split(",", 1)[0] if is_data_url(url) else url
    haystack = unquote(haystack).lower()

    findings = []
    for category, label, severity in _TOKEN_RULES:
        if category == "counterfeit":
            severity = cfg.get("counterfeit_severity") or severity
        for term in terms.get(category) or []:
            if isinstance(term, str) and term.strip() and _term_regex(term).search(haystack):
                findings.append({"url": url, "severity": severity, "label": label})
                break
    return findings


def _fetch_bytes(url: str, timeout: float, max_bytes: int) -> tuple[bytes, str | None]:
    """GET url, streaming, refusing payloads over max_bytes. Returns (body, content-type).

    timeout bounds each network operation and the whole download.
    """
    deadline = time.monotonic() + timeout
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            with client.stream("GET", url) as resp:
                resp.raise_for_status()
                declared = resp.headers.get("content-type")
                buf = bytearray()
                for chunk in resp.iter_bytes():
                    buf.extend(chunk)
                    if len(buf) > max_bytes:
                        raise ImageFetchError(f"payload exceeds {max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise ImageFetchError(f"timeout: download took over {timeout:g}s")
                return bytes(buf), declared
    except httpx.HTTPError as e:
        raise ImageFetchError(f"{type(e).__name__}: {e}") from e


def _decode_data_url(url: str) -> tuple[bytes, str]:
    header, _, payload = url.partition(",")
    declared = header[5:].split(";", 1)[0].lower()
    try:
        return base64.b64decode(re.sub(r"\s+", "", payload), validate=True), declared
    except (binascii.Error, ValueError) as e:
        raise ImageFetchError(f"bad base64 payload: {e}") from e


def _normalize_mime(value: str | None) -> str:
    mime = (value or "").split(";", 1)[0].strip().lower()
    return {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg", "image/x-png": "image/png"}.get(mime, mime)


def _looks_like_svg(data: bytes) -> bool:
    head = data[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


def _sniff_file(path: str) -> tuple[str | None, tuple[int, int] | None]:
    """(mime, (width, height)) from Pillow, or (None, None) when Pillow cannot read it."""
    try:
        with Image.open(path) as img:
            # multi-picture JPEGs from phones and cameras
            fmt = "JPEG" if img.format == "MPO" else img.format
            mime = Image.MIME.get(fmt or "")
            size = img.size
            img.verify()
        return mime, size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        _logger.debug("Pillow could not read image: %s", e)
        return None, None


def inspect_bytes(
    url: str,
    data: bytes,
    declared_type: str | None = None,
    settings: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Byte-level checks: MIME/extension mismatch, dimensions, aspect ratio, payload size.

    The bytes go through a uniquely named temp file that is always removed.
    """
    settings = settings or get_settings()
    cfg = settings.get("images") or {}
    findings: list[dict[str, Any]] = []

    def _medium(label: str) -> None:
        findings.append({"url": url, "severity": "medium", "label": label})

    min_bytes = int(cfg.get("min_bytes") or 0)
    if len(data) < min_bytes:
        _medium(f"Image payload unusually small ({len(data)} bytes)")

    if _looks_like_svg(data):
        sniffed, size = SVG_MIME, None
    else:
        fd, path = tempfile.mkstemp(prefix="tosguardian-", suffix=".img")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            sniffed, size = _sniff_file(path)
        finally:
            Path(path).unlink(missing_ok=True)

    if sniffed is None:
        _medium(LABEL_UNDECODABLE)
        return findings

    declared = _normalize_mime(declared_type)
    if declared and declared not in ("application/octet-stream", "binary/octet-stream") and declared != sniffed:
        _medium(f"Image MIME type mismatch (declared {declared}, detected {sniffed})")

    ext = url_extension(url)
    ext_mime = _EXT_MIME.get(ext)
    if ext_mime and ext_mime != sniffed:
        _medium(f"Image extension does not match content ({ext} vs {sniffed})")

    if size:
        width, height = size
        min_w, min_h = int(cfg.get("min_width") or 0), int(cfg.get("min_height") or 0)
        if width < min_w or height < min_h:
            _medium(f"Image too small ({width}x{height}, minimum {min_w}x{min_h})")
        if width > 0 and height > 0:
            ratio = width / height
            lo, hi = float(cfg.get("min_aspect") or 0), float(cfg.get("max_aspect") or 0)
            if (lo and ratio < lo) or (hi and ratio > hi):
                _medium(f"Unusual image aspect ratio ({ratio:.2f}, allowed {lo:g}-{hi:g})")
    return findings


def scan_images(
    fields: Any,
    settings: dict[str, Any] | None = None,
    enabled: bool | None = None,
) -> list[dict[str, Any]]:
    """Findings for every image reference in fields, in discovery order.

    enabled overrides `images.enabled` when given (a per-request switch).
    """
    settings = settings or get_settings()
    cfg = settings.get("images") or {}
    if not (cfg.get("enabled", True) if enabled is None else enabled):
        return []

    findings: list[dict[str, Any]] = []
    for ref in extract_image_urls(fields, cfg.get("hint_keys") or []):
        shown = display_url(ref)
        token_hits = url_token_findings(ref, settings)
        for f in token_hits:
            f["url"] = shown
        findings.extend(token_hits)

        try:
            if is_data_url(ref):
                data, declared = _decode_data_url(ref)
            elif cfg.get("fetch", True):
                data, declared = _fetch_bytes(ref, float(cfg.get("timeout_s") or 5.0),
                                              int(cfg.get("max_bytes") or 10 * 1024 * 1024))
            else:
                continue
        except ImageFetchError as e:
            _logger.info("Image fetch failed: %s", e, extra={"url": shown})
            if is_data_url(ref):
                findings.append({"url": shown, "severity": "medium", "label": LABEL_UNDECODABLE})
            elif has_image_extension(ref):
                findings.append({"url": shown, "severity": "medium", "label": LABEL_FETCH_FAILED})
            continue

        for f in inspect_bytes(ref, data, declared, settings):
            f["url"] = shown
            findings.append(f)

    if findings:
        _logger.info("Image findings: %d", len(findings), extra={"event": "images_scanned"})
    return findings
