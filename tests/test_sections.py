from conftest import ANALYSIS_TEXT
from sections import (
    POSITIVE_LABELS,
    UNPARSED_PLACEHOLDER,
    extract_section,
    extract_sections,
)

SIMPLE = "### 1. System\nfoo\n### 2. Positive\nbar\n### 3. Negative\nbaz"


def test_simple_headings_split_into_three_sections():
    assert extract_section(SIMPLE, "1. System") == "foo"
    assert extract_section(SIMPLE, "2. Positive") == "bar"
    assert extract_section(SIMPLE, "3. Negative") == "baz"


def test_model_output_format():
    sections = extract_sections(ANALYSIS_TEXT)
    assert sections.system_prompt == "You are a fashion photographer."
    assert sections.positive_prompt == "soft window light, beige linen backdrop"
    assert sections.negative_prompt == "blurry, extra limbs"
    assert sections.unparsed == []
    assert sections.can_generate


def test_primary_label_wins_over_fallback():
    text = "### 生图指令模板\nfrom fallback\n### 2. 正向提示词\nfrom primary\n"
    assert extract_section(text, *POSITIVE_LABELS) == "from primary"


def test_fallback_label_used_when_primary_missing():
    text = "### Positive Prompt\nstudio flash, white sweep"
    assert extract_sections(text).positive_prompt == "studio flash, white sweep"


def test_empty_match_falls_through_to_next_label():
    text = "### 2. 正向提示词\n### Positive Prompt\nthe real one"
    assert extract_section(text, *POSITIVE_LABELS) == "the real one"


def test_english_labels_are_case_insensitive():
    assert extract_section("### negative prompt\nnoise", "Negative Prompt") == "noise"


def test_label_is_matched_literally():
    assert extract_section("### 1x System\nfoo", "1. System") == ""


def test_unmatched_text_degrades_to_empty_sections():
    sections = extract_sections("The model ignored the format entirely.")
    assert sections.system_prompt == sections.positive_prompt == sections.negative_prompt == ""
    assert sections.unparsed == ["system_prompt", "positive_prompt", "negative_prompt"]
    assert not sections.can_generate
    assert all(text == UNPARSED_PLACEHOLDER for _, text in sections.display())


def test_non_text_input_never_raises():
    assert extract_section("", "1. System") == ""
    assert extract_section(None, "1. System") == ""  # type: ignore[arg-type]


def test_extraction_is_idempotent():
    first = extract_sections(ANALYSIS_TEXT)
    assert extract_sections(ANALYSIS_TEXT) == first
    assert extract_section(SIMPLE, "2. Positive") == extract_section(SIMPLE, "2. Positive")
