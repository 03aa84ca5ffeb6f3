import pytest

import style_core
from conftest import ANALYSIS_TEXT, image_response, text_response
from costs import CostTracker
from errors import AnalysisError, CredentialError, GenerationError, NoImageReturnedError, ValidationError
from ingest import ingest_files, ingest_one


@pytest.fixture
def refs(png_bytes):
    return ingest_files([("a.png", png_bytes, "image/png"), ("b.png", png_bytes, "image/png")]).images


@pytest.fixture
def product(png_bytes):
    return ingest_one(("product.png", png_bytes, "image/png"))


# ── Analysis ──────────────────────────────────────────────────────────────────

def test_analysis_request_shape(gemini, refs, png_bytes):
    out = style_core.analyze_images(refs, client_factory=gemini.factory)
    assert out == ANALYSIS_TEXT
    assert gemini.keys == ["free-key"]

    call = gemini.calls[0]
    assert call["model"] == style_core.ANALYSIS_MODEL
    parts = call["contents"][0].parts
    assert len(parts) == len(refs) + 2
    assert parts[0].text == style_core.META_PROMPT
    assert parts[1].inline_data.data == png_bytes
    assert parts[1].inline_data.mime_type == "image/png"
    assert parts[-1].text == style_core.CLOSING_INSTRUCTION
    assert call["config"].temperature == 0.7
    assert call["config"].thinking_config.thinking_budget == 4000


def test_empty_analysis_returns_fallback_text(gemini, refs):
    gemini.analysis_response = text_response("")
    assert style_core.analyze_images(refs, client_factory=gemini.factory) == style_core.EMPTY_ANALYSIS_TEXT


def test_analysis_service_failure_carries_message(gemini, refs):
    gemini.error = RuntimeError("503 UNAVAILABLE: model overloaded")
    with pytest.raises(AnalysisError, match="model overloaded"):
        style_core.analyze_images(refs, client_factory=gemini.factory)


def test_analysis_requires_images(gemini):
    with pytest.raises(ValidationError):
        style_core.analyze_images([], client_factory=gemini.factory)
    assert gemini.calls == []


def test_analysis_without_key_never_calls(gemini, refs, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
    with pytest.raises(AnalysisError, match="GEMINI_API_KEY"):
        style_core.analyze_images(refs, client_factory=gemini.factory)
    assert gemini.calls == []


def test_analysis_records_token_usage(gemini, refs):
    tracker = CostTracker()
    style_core.analyze_images(refs, client_factory=gemini.factory, cost_tracker=tracker)
    item = tracker.items[0]
    assert (item["input_tokens"], item["output_tokens"]) == (1200, 400)
    assert tracker.summary()["text_cost"] > 0


# ── Generation ────────────────────────────────────────────────────────────────

def test_flash_request_shape(gemini, product, png_bytes):
    url = style_core.generate_ecom_image(product, "linen backdrop", "flash", client_factory=gemini.factory)
    assert url.startswith("data:image/png;base64,")

    call = gemini.calls[0]
    assert call["model"] == style_core.FLASH_IMAGE_MODEL
    parts = call["contents"][0].parts
    assert parts[0].inline_data.data == png_bytes
    assert parts[1].text == style_core.build_ecom_prompt("linen backdrop")
    assert "Apply this style: linen backdrop." in parts[1].text
    assert call["config"].image_config.aspect_ratio == "3:4"
    assert call["config"].image_config.image_size is None


def test_pro_adds_resolution(gemini, product):
    style_core.generate_ecom_image(
        product, "neon alley", style_core.PRO_IMAGE_MODEL, api_key="paid", client_factory=gemini.factory
    )
    assert gemini.keys == ["paid"]
    assert gemini.calls[0]["config"].image_config.image_size == "1K"


def test_first_inline_image_part_is_returned(gemini, product):
    gemini.image_response = image_response(b"\x89PNGdata", mime="image/jpeg")
    url = style_core.generate_ecom_image(product, "p", client_factory=gemini.factory)
    assert url == "data:image/jpeg;base64,iVBOR2RhdGE="


def test_response_without_image_fails(gemini, product):
    gemini.image_response = image_response(None)
    with pytest.raises(NoImageReturnedError, match="No image data"):
        style_core.generate_ecom_image(product, "p", client_factory=gemini.factory)


def test_entity_not_found_is_a_credential_error(gemini, product):
    gemini.error = RuntimeError("404 NOT_FOUND. Requested entity was not found.")
    with pytest.raises(CredentialError):
        style_core.generate_ecom_image(product, "p", "pro", api_key="stale", client_factory=gemini.factory)


def test_other_failures_are_generation_errors(gemini, product):
    gemini.error = RuntimeError("500 INTERNAL")
    with pytest.raises(GenerationError) as info:
        style_core.generate_ecom_image(product, "p", client_factory=gemini.factory)
    assert not isinstance(info.value, CredentialError)


def test_unknown_model_and_empty_prompt_rejected(gemini, product):
    with pytest.raises(ValidationError):
        style_core.generate_ecom_image(product, "p", "dall-e", client_factory=gemini.factory)
    with pytest.raises(ValidationError):
        style_core.generate_ecom_image(product, "   ", client_factory=gemini.factory)
    assert gemini.calls == []
