"""Core Gemini calls: style analysis and e-commerce image generation.

Used by both the web app and the CLI.  Each call builds a fresh client from
the current key so a newly selected key takes effect immediately.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from costs import CostTracker, usage_tokens
from errors import AnalysisError, CredentialError, GenerationError, NoImageReturnedError, ValidationError
from ingest import split_data_url
from keys import default_api_key
from records import UploadedImage

log = logging.getLogger(__name__)

ClientFactory = Callable[[str], Any]

# ---------------------------------------------------------------------------
# Model catalogue
# ---------------------------------------------------------------------------

ANALYSIS_MODEL = "gemini-3-pro-preview"
ANALYSIS_TEMPERATURE = 0.7
ANALYSIS_THINKING_BUDGET = 4000
EMPTY_ANALYSIS_TEXT = "Failed to generate response."

FLASH_IMAGE_MODEL = "gemini-2.5-flash-image"
PRO_IMAGE_MODEL = "gemini-3-pro-image-preview"

IMAGE_MODELS: List[Dict] = [
    {
        "id": FLASH_IMAGE_MODEL,
        "alias": "flash",
        "name": "Nano Banana (Flash)",
        "description": "Fast and cheap. Good for trying out a style.",
        "paid": False,
        "image_size": None,
    },
    {
        "id": PRO_IMAGE_MODEL,
        "alias": "pro",
        "name": "Nano Banana Pro (HQ)",
        "description": "Higher fidelity output. Requires a paid API key.",
        "paid": True,
        "image_size": "1K",
    },
]

DEFAULT_IMAGE_MODEL = FLASH_IMAGE_MODEL
ASPECT_RATIO = "3:4"

ENTITY_NOT_FOUND = "Requested entity was not found"

META_PROMPT = """
【角色设定 (Role Definition)】 You are a senior visual art director and AI prompt engineer.
You read a set of reference images and extract their photographic style, lighting logic,
composition pattern and mood, then turn that into structured prompts for an image model.

【核心任务 (Core Task)】 The input is a set of style reference images, usually apparel or
product photography. Your job:
1. Analyse the visual language of these images (lighting, perspective, background, texture).
2. Write a complete generation prompt set that makes an image model reproduce this style
   faithfully, including strict anti-artifact instructions.

【分析框架 (Analysis Framework)】
- Lighting: hard or soft? Natural, studio or neon?
- Composition: subject placement, camera angle.
- Background: setting details.
- Mood: minimalist, vintage, cyberpunk, etc.

【输出规范 (Output Format)】 Use exactly these three headings:
### 1. Agent 系统设定 (System Prompt)
### 2. 正向提示词 (Positive Prompt)
### 3. 负向提示词 (Negative Prompt)
"""

CLOSING_INSTRUCTION = "请分析以上图片并生成对应的生图Agent指令及Prompt模板。"

ECOM_PROMPT_TEMPLATE = (
    "Professional e-commerce photography. Apply this style: {prompt}. "
    "The central subject is the item in the attached image. "
    "Ensure the item maintains its core design, color, and features while being "
    "seamlessly integrated into the described environment and lighting."
)


def resolve_image_model(name: str) -> Dict:
    """Look up an image model by id or short alias ("flash" / "pro")."""
    for m in IMAGE_MODELS:
        if name in (m["id"], m["alias"]):
            return m
    raise ValidationError(f"Unknown image model: {name}")


def _default_client(api_key: str) -> Any:
    return genai.Client(api_key=api_key)


def _image_part(image: UploadedImage) -> types.Part:
    try:
        _, data = split_data_url(image.data_url)
    except ValueError as exc:
        raise ValidationError(f"Image {image.id} is not a valid data URL: {exc}") from exc
    return types.Part.from_bytes(data=data, mime_type=image.mime_type)


# ---------------------------------------------------------------------------
# Style analysis
# ---------------------------------------------------------------------------

def analyze_images(
    images: Sequence[UploadedImage],
    api_key: Optional[str] = None,
    client_factory: Optional[ClientFactory] = None,
    cost_tracker: Optional[CostTracker] = None,
) -> str:
    """Reverse-engineer a style description from reference images.

    Returns the raw model text (or EMPTY_ANALYSIS_TEXT when the model returns
    nothing).  Service failures are raised as AnalysisError.
    """
    if not images:
        raise ValidationError("At least one reference image is required")

    parts = [types.Part.from_text(text=META_PROMPT)]
    parts.extend(_image_part(img) for img in images)
    parts.append(types.Part.from_text(text=CLOSING_INSTRUCTION))

    config = types.GenerateContentConfig(
        temperature=ANALYSIS_TEMPERATURE,
        thinking_config=types.ThinkingConfig(thinking_budget=ANALYSIS_THINKING_BUDGET),
    )

    key = api_key or default_api_key()
    if not key:
        raise AnalysisError("GEMINI_API_KEY not set")

    t0 = time.time()
    try:
        client = (client_factory or _default_client)(key)
        response = client.models.generate_content(
            model=ANALYSIS_MODEL,
            contents=[types.Content(role="user", parts=parts)],
            config=config,
        )
    except Exception as exc:
        log.error("Analysis call failed after %.1fs: %s", time.time() - t0, exc)
        raise AnalysisError(str(exc) or "Analysis failed. Please try again.") from exc

    in_tok, out_tok = usage_tokens(response)
    log.info(
        "Analysis call: model=%s  %d images  %d in / %d out tokens  %.1fs",
        ANALYSIS_MODEL, len(images), in_tok, out_tok, time.time() - t0,
    )
    if cost_tracker:
        cost_tracker.record_text("analysis", ANALYSIS_MODEL, in_tok, out_tok)

    return getattr(response, "text", None) or EMPTY_ANALYSIS_TEXT


# ---------------------------------------------------------------------------
# Product image generation
# ---------------------------------------------------------------------------

def build_ecom_prompt(style_prompt: str) -> str:
    return ECOM_PROMPT_TEMPLATE.format(prompt=style_prompt)


def _build_image_config(model: Dict) -> types.GenerateContentConfig:
    image_kwargs: Dict[str, Any] = {"aspect_ratio": ASPECT_RATIO}
    # image_size is only accepted by the Pro model
    if model["image_size"]:
        image_kwargs["image_size"] = model["image_size"]
    return types.GenerateContentConfig(image_config=types.ImageConfig(**image_kwargs))


def _response_parts(response: Any) -> List[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _first_image_data_url(response: Any) -> Optional[str]:
    for part in _response_parts(response):
        inline = getattr(part, "inline_data", None)
        if inline is None or not getattr(inline, "data", None):
            continue
        data = inline.data
        if isinstance(data, str):
            data = base64.b64decode(data)
        mime = getattr(inline, "mime_type", None) or "image/png"
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
    return None


def generate_ecom_image(
    product_image: UploadedImage,
    prompt: str,
    model_name: str = DEFAULT_IMAGE_MODEL,
    api_key: Optional[str] = None,
    client_factory: Optional[ClientFactory] = None,
    cost_tracker: Optional[CostTracker] = None,
) -> str:
    """Restage the product in the given style. Returns the image as a data URL."""
    model = resolve_image_model(model_name)
    if not prompt or not prompt.strip():
        raise ValidationError("A positive prompt is required")

    parts = [_image_part(product_image), types.Part.from_text(text=build_ecom_prompt(prompt))]
    config = _build_image_config(model)

    key = api_key or default_api_key()
    if not key:
        if model["paid"]:
            raise CredentialError("No paid API key selected for the Pro model.")
        raise GenerationError("GEMINI_API_KEY not set")

    t0 = time.time()
    try:
        client = (client_factory or _default_client)(key)
        response = client.models.generate_content(
            model=model["id"],
            contents=[types.Content(role="user", parts=parts)],
            config=config,
        )
    except Exception as exc:
        err = str(exc)
        log.error("Image call failed after %.1fs: model=%s  %s", time.time() - t0, model["id"], err)
        if ENTITY_NOT_FOUND in err:
            raise CredentialError(err) from exc
        raise GenerationError(err) from exc

    elapsed = time.time() - t0
    url = _first_image_data_url(response)
    if not url:
        log.warning("Image call returned no image: model=%s  %.1fs", model["id"], elapsed)
        raise NoImageReturnedError("No image data returned from model.")

    log.info("Image call: model=%s  %.1fs", model["id"], elapsed)
    if cost_tracker:
        cost_tracker.record_image("generation", model["id"], elapsed)
    return url
