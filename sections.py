"""Split the raw style analysis into its three labelled sections.

The analysis model is asked for markdown headings of the form
``### 2. 正向提示词 (Positive Prompt)``.  Extraction is a best-effort parse:
when the model drifts from that format a section simply comes back empty.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

HEADING_MARKER = "###"
UNPARSED_PLACEHOLDER = "Parsing content..."

# Label precedence per section: primary localised, fallback localised, English.
SYSTEM_LABELS: Tuple[str, ...] = ("1. Agent 系统设定", "Agent 系统设定", "System Prompt")
POSITIVE_LABELS: Tuple[str, ...] = ("2. 正向提示词", "生图指令模板", "Positive Prompt")
NEGATIVE_LABELS: Tuple[str, ...] = ("3. 负向提示词", "负向提示词", "Negative Prompt")


def _section_pattern(label: str) -> "re.Pattern[str]":
    # label, optional "(English label)" tail on the same line, body up to next heading
    return re.compile(
        re.escape(label)
        + r"[^\S\n]*(?:\([^)\n]*\))?\s*([\s\S]*?)(?=" + re.escape(HEADING_MARKER) + r"|$)",
        re.IGNORECASE,
    )


def extract_section(content: str, *labels: str) -> str:
    """Return the trimmed body under the first label that yields text, else ""."""
    if not content or not isinstance(content, str):
        return ""
    for label in labels:
        if not label:
            continue
        match = _section_pattern(label).search(content)
        if match:
            body = match.group(1).strip()
            if body:
                return body
    return ""


@dataclass(frozen=True)
class ExtractedSections:
    system_prompt: str = ""
    positive_prompt: str = ""
    negative_prompt: str = ""

    @property
    def unparsed(self) -> List[str]:
        return [name for name, value in self._items() if not value]

    @property
    def can_generate(self) -> bool:
        return bool(self.positive_prompt)

    def _items(self) -> List[Tuple[str, str]]:
        return [
            ("system_prompt", self.system_prompt),
            ("positive_prompt", self.positive_prompt),
            ("negative_prompt", self.negative_prompt),
        ]

    def to_dict(self) -> Dict:
        d: Dict = dict(self._items())
        d["unparsed"] = self.unparsed
        return d

    def display(self) -> List[Tuple[str, str]]:
        """(title, text) rows with the placeholder standing in for missing sections."""
        titles = {
            "system_prompt": "Agent System Prompt",
            "positive_prompt": "Positive Prompt",
            "negative_prompt": "Negative Prompt",
        }
        return [(titles[name], value or UNPARSED_PLACEHOLDER) for name, value in self._items()]


def extract_sections(content: str) -> ExtractedSections:
    return ExtractedSections(
        system_prompt=extract_section(content, *SYSTEM_LABELS),
        positive_prompt=extract_section(content, *POSITIVE_LABELS),
        negative_prompt=extract_section(content, *NEGATIVE_LABELS),
    )
