"""Tests for full pipeline."""
from unittest.mock import patch

import pytest

from tosguardian.config import deep_merge
from tosguardian.logging_config import request_id_var
from tosguardian.model import ModelError
from tosguardian.pipeline import handle_check, run_check
from tosguardian.rewrite import SAFE_COMPLIANCE_SENTENCE
from tosguardian.storage import load_receipts

MEDICAL = {"description": "This tea cures cancer fast"}
NSFW_URL = "https://cdn.test/nsfw_shoot_01.png"
QR_URL = "https://cdn.test/scan_me_qr.png"


def test_verdict_shape(settings):
    out = run_check("etsy", {"title": "Mug"}, settings=settings)
    assert set(out) == {"level", "issues", "fixes", "imageFindings", "model"}
    assert out["level"] == "green"
    assert out["model"] is None


def test_clean_listing_green(settings):
    fields = {"title": "Handmade ceramic mug", "description": "Stoneware mug, lead-free glaze"}
    out = run_check("etsy", fields, settings=settings)
    assert out == {"level": "green", "issues": [], "fixes": [], "imageFindings": [], "model": None}


def test_medical_claim_red(settings):
    out = run_check("etsy", MEDICAL, settings=settings)
    assert out["level"] == "red"
    assert "Medical / Health Claims detected." in out["issues"]
    assert out["fixes"][0]["field"] == "description"
    assert "cancer" not in out["fixes"][0]["suggestion"].lower()


def test_nsfw_image_red(settings):
    out = run_check("etsy", {"description": "Photo set", "image": NSFW_URL}, settings=settings)
    assert out["level"] == "red"
    assert out["issues"] == [f"Image flagged: NSFW/Adult content hint ({NSFW_URL})"]
    assert out["imageFindings"] == [
        {"url": NSFW_URL, "severity": "high", "label": "Image flagged: NSFW/Adult content hint"}
    ]


def test_qr_image_yellow(settings):
    out = run_check("etsy", {"description": "Nice ceramic mug", "image": QR_URL}, settings=settings)
    assert out["level"] == "yellow"
    assert len(out["imageFindings"]) == 1
    assert out["imageFindings"][0]["severity"] == "medium"


def test_scan_images_flag_off(settings):
    out = run_check("etsy", {"description": "Photo set", "image": NSFW_URL}, scan_images=False, settings=settings)
    assert out["level"] == "green"
    assert out["imageFindings"] == []


def test_image_scan_crash_is_contained(settings):
    with patch("tosguardian.pipeline.images.scan_images", side_effect=RuntimeError("boom")):
        out = run_check("etsy", {"description": "Photo set", "image": NSFW_URL}, settings=settings)
    assert out["level"] == "green"
    assert out["imageFindings"] == []


def test_missing_rulebook_red(settings):
    out = run_check("myspace", {"description": "hi"}, settings=settings)
    assert out["level"] == "red"
    assert out["issues"] == ["No rulebook found for myspace"]


def test_strict_mode_adopts_better_fix(settings):
    fields = {"description": "Best seller mug for tea"}
    assert run_check("amazon", fields, settings=settings)["level"] == "yellow"
    strict = run_check("amazon", fields, strict_mode=True, settings=settings)
    assert strict["level"] == "green"
    assert strict["issues"] == []
    assert strict["fixes"] == [{"field": "description", "suggestion": "mug for tea"}]


def test_strict_mode_medical_fix_rechecked(settings):
    out = run_check("etsy", MEDICAL, strict_mode=True, settings=settings)
    assert out["level"] == "green"
    assert out["issues"] == []


def test_strict_mode_keeps_image_findings(settings):
    fields = {**MEDICAL, "image": NSFW_URL}
    out = run_check("etsy", fields, strict_mode=True, settings=settings)
    assert out["level"] == "red"
    assert out["issues"] == [f"Image flagged: NSFW/Adult content hint ({NSFW_URL})"]


# ---------------------------------------------------------------------------
# Model step
# ---------------------------------------------------------------------------

def test_model_not_called_when_green(model_settings):
    with patch("tosguardian.pipeline.call_model") as call:
        out = run_check("etsy", {"title": "Mug"}, settings=model_settings)
    call.assert_not_called()
    assert out["model"] is None


def test_model_rewrite_added_as_fix(model_settings):
    reply = "Label: red\nRewrite: A calm herbal tea for relaxing evenings"
    with patch("tosguardian.pipeline.call_model", return_value=reply):
        out = run_check("etsy", MEDICAL, settings=model_settings)
    assert out["level"] == "red"
    assert out["model"] == {"name": "Llama 3.1 (local)", "label": "red",
                            "rewrite": "A calm herbal tea for relaxing evenings"}
    assert out["fixes"][-1] == {"field": "description",
                                "suggestion": "A calm herbal tea for relaxing evenings", "source": "model"}


def test_model_strict_adopts_clean_rewrite(model_settings):
    fields = {"description": "Make $500 a day passively"}
    with patch("tosguardian.pipeline.call_model", return_value="Label: red\nRewrite: A cozy handmade mug"):
        out = run_check("etsy", fields, strict_mode=True, settings=model_settings)
    assert out["level"] == "green"
    assert out["issues"] == []
    assert out["model"]["rewrite"] == "A cozy handmade mug"
    assert all(f.get("source") != "model" for f in out["fixes"])


def test_model_strict_degrades_bad_rewrite(model_settings):
    fields = {"description": "Make $500 a day passively"}
    with patch("tosguardian.pipeline.call_model", return_value="Label: red\nRewrite: Make $900 a day"):
        out = run_check("etsy", fields, strict_mode=True, settings=model_settings)
    assert out["level"] == "red"
    assert out["model"]["rewrite"] == SAFE_COMPLIANCE_SENTENCE


def test_model_without_rewrite(model_settings):
    with patch("tosguardian.pipeline.call_model", return_value="Label: yellow"):
        out = run_check("etsy", MEDICAL, settings=model_settings)
    assert out["model"] == {"name": "Llama 3.1 (local)", "label": "yellow", "rewrite": None}


def test_model_error_is_reported(model_settings):
    with patch("tosguardian.pipeline.call_model", side_effect=ModelError("model timeout")):
        out = run_check("etsy", MEDICAL, settings=model_settings)
    assert out["level"] == "red"
    assert out["model"] == {"name": "Llama 3.1 (local)", "error": "model timeout"}


def test_model_crash_is_contained(model_settings):
    with patch("tosguardian.pipeline.call_model", side_effect=KeyError("x")):
        out = run_check("etsy", MEDICAL, settings=model_settings)
    assert out["level"] == "red"
    assert "error" in out["model"]


# ---------------------------------------------------------------------------
# Boundary
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("body", [
    None,
    {},
    {"platform": "etsy"},
    {"fields": {"title": "x"}},
    {"platform": "etsy", "fields": "title=x"},
])
def test_handle_check_bad_request(settings, body):
    assert handle_check(body, settings) == (400, {"error": "Missing platform or fields"})


def test_handle_check_ok(settings):
    status, payload = handle_check({"platform": "Etsy", "fields": MEDICAL}, settings)
    assert status == 200
    assert payload["level"] == "red"


def test_handle_check_server_error(settings):
    with patch("tosguardian.pipeline._evaluate", side_effect=RuntimeError("boom")):
        assert handle_check({"platform": "etsy", "fields": MEDICAL}, settings) == (500, {"error": "Server error"})


def test_handle_check_saves_receipt(settings):
    body = {"platform": "etsy", "fields": {**MEDICAL, "image": NSFW_URL}, "saveReceipts": True, "strictMode": True}
    status, _ = handle_check(body, settings)
    assert status == 200
    receipts = load_receipts(settings=settings)
    assert len(receipts) == 1
    r = receipts[0]
    assert r["platform"] == "etsy"
    assert r["level"] == "red"
    assert r["rulebookVersion"] == "1.0.0"
    assert r["strictMode"] is True
    assert r["imageFindingsCount"] == 1
    assert "image" not in r["fieldsSnapshot"]
    assert r["fieldsSnapshot"]["description"] == MEDICAL["description"]


def test_handle_check_receipts_default_from_settings(settings):
    handle_check({"platform": "etsy", "fields": MEDICAL}, settings)
    assert load_receipts(settings=settings) == []


def test_handle_check_receipt_failure_ignored(settings):
    with patch("tosguardian.pipeline.save_receipt", side_effect=OSError("disk full")):
        status, payload = handle_check({"platform": "etsy", "fields": MEDICAL, "saveReceipts": True}, settings)
    assert status == 200
    assert payload["level"] == "red"


@pytest.mark.parametrize("flag", ["true", "false", 1])
def test_handle_check_strict_mode_needs_real_bool(settings, flag):
    body = {"platform": "amazon", "fields": {"description": "Best seller mug for tea"}, "strictMode": flag}
    status, payload = handle_check(body, settings)
    assert status == 200
    assert payload["level"] == "yellow"


def test_handle_check_strict_mode_true(settings):
    body = {"platform": "amazon", "fields": {"description": "Best seller mug for tea"}, "strictMode": True}
    assert handle_check(body, settings)[1]["level"] == "green"


def test_handle_check_request_id_scoped_to_call(settings):
    seen = []

    def _capture(*args):
        seen.append(request_id_var.get())
        return {"level": "green", "issues": [], "fixes": [], "imageFindings": [], "model": None}, None

    token = request_id_var.set(None)
    try:
        with patch("tosguardian.pipeline._evaluate", side_effect=_capture):
            handle_check({"platform": "etsy", "fields": {"title": "Mug"}}, settings)
            handle_check({"platform": "etsy", "fields": {"title": "Mug"}}, settings)
        assert request_id_var.get() is None
    finally:
        request_id_var.reset(token)
    assert all(seen)
    assert seen[0] != seen[1]


def test_scan_images_request_flag_beats_config(settings):
    off = deep_merge(settings, {"images": {"enabled": False}})
    fields = {"description": "Photo set", "image": NSFW_URL}
    assert run_check("etsy", fields, settings=off)["level"] == "green"
    status, payload = handle_check({"platform": "etsy", "fields": fields, "scanImages": True}, off)
    assert status == 200
    assert payload["level"] == "red"
