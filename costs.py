"""Usage and cost tracking for Gemini calls.

Pricing tables are approximate and updated periodically.
Text/vision costs are exact (calculated from token counts).
Image costs are estimated (per-image flat rate based on published pricing).

Outputs:
  logs/costs.log          : human-readable append-only log
  logs/costs_totals.json  : machine-readable running totals
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

LOGS_DIR = Path(__file__).parent / "logs"
COST_LOG = LOGS_DIR / "costs.log"
TOTALS_FILE = LOGS_DIR / "costs_totals.json"

# ── Pricing tables ────────────────────────────────────────────────────────────
# Text/vision: (input $/1M tokens, output $/1M tokens); thinking billed as output
_TEXT_PRICING: Dict[str, tuple] = {
    "gemini-3-pro":     (2.00, 12.00),
    "gemini-2.5-pro":   (1.25, 10.00),
    "gemini-2.5-flash": (0.30,  2.50),
}
_TEXT_DEFAULT = (2.00, 12.00)

# Image models: estimated $/image
_IMAGE_PRICING: Dict[str, float] = {
    "gemini-2.5-flash-image":     0.039,
    "gemini-3-pro-image-preview": 0.134,
}
_IMAGE_DEFAULT = 0.134


def _text_rate(model: str) -> tuple:
    for prefix, rate in _TEXT_PRICING.items():
        if model.startswith(prefix):
            return rate
    log.debug("No text pricing match for '%s', using default", model)
    return _TEXT_DEFAULT


def _image_rate(model: str) -> float:
    rate = _IMAGE_PRICING.get(model)
    if rate is None:
        log.debug("No image pricing match for '%s', using default", model)
        return _IMAGE_DEFAULT
    return rate


def usage_tokens(response: Any) -> tuple:
    """(input, output) token counts from a response's usage metadata, zeros if absent."""
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    in_tok = getattr(usage, "prompt_token_count", None) or 0
    out_tok = (getattr(usage, "candidates_token_count", None) or 0) + (
        getattr(usage, "thoughts_token_count", None) or 0
    )
    return int(in_tok), int(out_tok)


# ── CostTracker ───────────────────────────────────────────────────────────────

class CostTracker:
    """Accumulates cost records for one session."""

    def __init__(self) -> None:
        self.items: List[Dict] = []

    def record_text(self, stage: str, model: str, input_tokens: int, output_tokens: int) -> float:
        in_rate, out_rate = _text_rate(model)
        cost = (input_tokens * in_rate + output_tokens * out_rate) / 1_000_000
        self.items.append(
            {
                "type": "text",
                "stage": stage,
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost": cost,
                "estimated": False,
            }
        )
        log.debug(
            "Text cost [%s] %s  %d in / %d out tokens  $%.6f",
            stage, model, input_tokens, output_tokens, cost,
        )
        return cost

    def record_image(self, stage: str, model: str, duration: float = 0.0) -> float:
        cost = _image_rate(model)
        self.items.append(
            {
                "type": "image",
                "stage": stage,
                "model": model,
                "duration": round(duration, 2),
                "cost": cost,
                "estimated": True,
            }
        )
        log.debug("Image cost [%s] %s  %.1fs  ~$%.6f", stage, model, duration, cost)
        return cost

    def summary(self) -> Dict:
        text_cost = sum(i["cost"] for i in self.items if i["type"] == "text")
        image_cost = sum(i["cost"] for i in self.items if i["type"] == "image")
        return {
            "items":         list(self.items),
            "text_cost":     text_cost,
            "image_cost":    image_cost,
            "total":         text_cost + image_cost,
            "has_estimates": any(i.get("estimated") for i in self.items),
        }


# ── Totals persistence ────────────────────────────────────────────────────────

def _empty_totals() -> Dict:
    return {"entry_count": 0, "text_total": 0.0, "image_total": 0.0, "grand_total": 0.0}


def _load_totals() -> Dict:
    if TOTALS_FILE.exists():
        try:
            return {**_empty_totals(), **json.loads(TOTALS_FILE.read_text())}
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Ignoring unreadable cost totals: %s", exc)
    return _empty_totals()


def get_totals() -> Dict:
    return _load_totals()


# ── Log writer ────────────────────────────────────────────────────────────────

_W = 81
_DIV = "─" * _W
_HDIV = "═" * _W


def append_cost_log(label: str, tracker: CostTracker, since: int = 0) -> Optional[Dict]:
    """Append items recorded after index ``since`` to costs.log and update totals.

    Returns the updated totals, or None when there was nothing new to log.
    """
    items = tracker.items[since:]
    if not items:
        return None

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    text_cost = sum(i["cost"] for i in items if i["type"] == "text")
    image_cost = sum(i["cost"] for i in items if i["type"] == "image")
    est_marker = "~" if any(i["estimated"] for i in items) else " "

    lines = [_HDIV, f"  {label:<50} {now}", _DIV]
    for item in items:
        if item["type"] == "text":
            detail = f"{item['input_tokens']:,}↑ / {item['output_tokens']:,}↓"
            cost_str = f"${item['cost']:.6f}"
        else:
            detail = f"{item['duration']:.1f}s" if item["duration"] else "—"
            cost_str = f"~${item['cost']:.6f}"
        lines.append(f"  {item['stage']:<14} {item['model']:<30} {detail:<22} {cost_str:>11}")
    lines.append(_DIV)
    lines.append(f"  {'Total:':<42}{est_marker}${text_cost + image_cost:>12.6f}")
    lines.append("")

    with open(COST_LOG, "a", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")

    totals = _load_totals()
    totals["entry_count"] += 1
    totals["text_total"] += text_cost
    totals["image_total"] += image_cost
    totals["grand_total"] += text_cost + image_cost
    TOTALS_FILE.write_text(json.dumps(totals, indent=2))

    log.info(
        "Cost logged: %s  total=%s$%.4f  (text=$%.4f  image=~$%.4f)",
        label, est_marker, text_cost + image_cost, text_cost, image_cost,
    )
    return totals
