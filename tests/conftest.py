"""Pytest fixtures: offline settings, scratch rules directories, generated images."""
import json
import sys
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from tosguardian.config import deep_merge, get_settings  # noqa: E402


# ---------------------------------------------------------------------------
# Settings: shipped rules, but no network and no receipts
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    return deep_merge(get_settings(), {
        "save_receipts": False,
        "receipts_dir": str(tmp_path / "receipts"),
        "images": {"fetch": False},
        "model": {"enabled": False},
    })


@pytest.fixture
def model_settings(settings):
    return deep_merge(settings, {"model": {"enabled": True}})


# ---------------------------------------------------------------------------
# Scratch rules directory
# ---------------------------------------------------------------------------

@pytest.fixture
def rules_tmp(tmp_path):
    d = tmp_path / "rules"
    d.mkdir()
    return d


@pytest.fixture
def write_rule(rules_tmp):
    def _write(name, data):
        path = rules_tmp / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def tmp_settings(settings, rules_tmp):
    return deep_merge(settings, {"rules_dir": str(rules_tmp)})


@pytest.fixture
def mini_rulebook():
    return {
        "platform": "demo",
        "version": "0.1.0",
        "limits": {"title_max": 20, "tags_max_count": 3},
        "rewrite": {"neutral_noun": "general comfort"},
        "categories": [
            {"id": "giveaway", "label": "Giveaway bait", "severity": "high", "patterns": ["\\bfree gift\\b"]},
        ],
    }


# ---------------------------------------------------------------------------
# Generated images
# ---------------------------------------------------------------------------

def _encode(size, fmt):
    # gradient so even small images are not a near-empty payload
    img = Image.radial_gradient("L").convert("RGB").resize(size)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes():
    return _encode((120, 100), "JPEG")


@pytest.fixture
def png_bytes():
    return _encode((120, 100), "PNG")


@pytest.fixture
def make_image():
    return _encode
