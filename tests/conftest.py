from __future__ import annotations

import io
import os
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

# Must be set before app.py is imported by any test module
os.environ["STYLE_DB_PATH"] = str(Path(tempfile.mkdtemp()) / "history.db")
os.environ["GEMINI_API_KEY"] = "free-key"
os.environ.pop("GEMINI_PAID_API_KEY", None)

import style_core  # noqa: E402
from keys import KeySelector  # noqa: E402

ANALYSIS_TEXT = (
    "### 1. Agent 系统设定 (System Prompt)\n"
    "You are a fashion photographer.\n"
    "### 2. 正向提示词 (Positive Prompt)\n"
    "soft window light, beige linen backdrop\n"
    "### 3. 负向提示词 (Negative Prompt)\n"
    "blurry, extra limbs"
)


def make_png(color: str = "red", size: tuple = (8, 8), fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


def text_response(text: Optional[str]) -> Any:
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(
            prompt_token_count=1200, candidates_token_count=300, thoughts_token_count=100
        ),
    )


def image_response(data: Optional[bytes] = b"generated-bytes", mime: str = "image/png") -> Any:
    parts = [SimpleNamespace(text="Here is your image", inline_data=None)]
    if data is not None:
        parts.append(SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime)))
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=None,
    )


class FakeGemini:
    """Stands in for genai.Client; routes by model name."""

    def __init__(self) -> None:
        self.analysis_response: Any = text_response(ANALYSIS_TEXT)
        self.image_response: Any = image_response()
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []
        self.keys: List[str] = []
        self.models = self

    def factory(self, api_key: str) -> "FakeGemini":
        self.keys.append(api_key)
        return self

    def generate_content(self, model: str, contents: Any, config: Any) -> Any:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        if model == style_core.ANALYSIS_MODEL:
            return self.analysis_response
        return self.image_response


@pytest.fixture
def gemini() -> FakeGemini:
    return FakeGemini()


class FakeKeySelector(KeySelector):
    def __init__(self, key: str = "", grant_on_open: str = "") -> None:
        self.key = key
        self.grant_on_open = grant_on_open
        self.opened = 0

    def api_key(self) -> str:
        return self.key

    def open_select_key(self) -> None:
        self.opened += 1
        if self.grant_on_open:
            self.key = self.grant_on_open


@pytest.fixture
def key_selector() -> FakeKeySelector:
    return FakeKeySelector()
