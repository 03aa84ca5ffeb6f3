#!/usr/bin/env python3
"""CLI wrapper for style analysis and product image generation.

Usage:
    python style_cli.py analyze refs/*.jpg
    python style_cli.py generate --product shoe.png --style 1a2b3c4d --model pro --count 3
    python style_cli.py history
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

import log_setup
log_setup.configure(os.environ.get("LOG_LEVEL", "WARNING"))

import style_core
from controller import MAX_GENERATIONS, AppStatus, GenerationLab, StyleApp
from errors import IngestError, SessionLimitError, StyleError
from history import SqliteHistoryStore
from ingest import ingest_one, split_data_url
from keys import PromptKeySelector, default_api_key


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Reverse-engineer a photo style and apply it to product shots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python style_cli.py analyze refs/look1.jpg refs/look2.jpg --json
  python style_cli.py generate --product bag.png --style 1a2b3c4d
  python style_cli.py generate --product bag.png --prompt "soft window light, linen" --model pro
  python style_cli.py history --delete 1a2b3c4d
""",
    )
    parser.add_argument("--list-models", action="store_true", help="List available models and exit")
    parser.add_argument("--db", default=None, help="History database path (default: $STYLE_DB_PATH or history.db)")
    sub = parser.add_subparsers(dest="command")

    p_an = sub.add_parser("analyze", help="Analyse 1-10 reference images")
    p_an.add_argument("images", nargs="+", help="Reference image files")
    p_an.add_argument("--json", action="store_true", help="Print sections as JSON")

    p_gen = sub.add_parser("generate", help="Restage a product photo in a saved or given style")
    p_gen.add_argument("--product", required=True, help="Product image file")
    src = p_gen.add_mutually_exclusive_group(required=True)
    src.add_argument("--style", help="Saved style id (see `history`)")
    src.add_argument("--prompt", help="Positive prompt to apply directly")
    p_gen.add_argument(
        "--model",
        choices=[m["alias"] for m in style_core.IMAGE_MODELS],
        default="flash",
        help="Image model (default: flash)",
    )
    p_gen.add_argument("--count", type=int, default=1, help=f"Variations to generate (max {MAX_GENERATIONS})")
    p_gen.add_argument("--output-dir", default="cli_output", help="Where to save images (default: cli_output)")

    p_hist = sub.add_parser("history", help="List or delete saved styles")
    p_hist.add_argument("--delete", metavar="ID", help="Delete a saved style")

    args = parser.parse_args(argv)

    if args.list_models:
        _list_models()
        return 0
    if not args.command:
        parser.print_help()
        return 2

    db_path = args.db or os.environ.get("STYLE_DB_PATH") or None
    app = StyleApp(
        store=SqliteHistoryStore(Path(db_path) if db_path else None),
        key_selector=PromptKeySelector(),
        progress_cb=_progress,
    )

    if args.command == "history":
        return _history(app, args.delete)

    if not default_api_key():
        print("✗  GEMINI_API_KEY not set", file=sys.stderr)
        return 2

    if args.command == "analyze":
        return _analyze(app, args.images, args.json)
    return _generate(app, args)


def _progress(event: dict) -> None:
    prefix = {
        "started":   "  ◌ ",
        "progress":  "  … ",
        "completed": "  ✓ ",
        "failed":    "  ✗ ",
        "loaded":    "  ✓ ",
    }.get(event.get("status", ""), "    ")
    _echo(f"{prefix}{event.get('message', '')}")


def _analyze(app: StyleApp, paths: list, as_json: bool) -> int:
    try:
        result = app.add_image_paths(paths)
    except StyleError as exc:
        print(f"✗  {exc}", file=sys.stderr)
        return 2
    for filename, reason in result.failures:
        _echo(f"  ⚠ skipped {filename}: {reason}")

    try:
        app.start_analysis()
    except StyleError as exc:
        print(f"✗  {exc}", file=sys.stderr)
        return 2

    if app.status is AppStatus.ERROR:
        print(f"\n✗  {app.error}", file=sys.stderr)
        return 1

    entry = app.history[0]
    sections = app.sections
    if as_json:
        print(json.dumps({"id": entry.id, **sections.to_dict()}, ensure_ascii=False, indent=2))
        return 0

    for title, text in sections.display():
        _echo(f"\n  ━━ {title} ━━")
        _echo(text)
    _echo(f"\n  Saved as style {entry.id}")
    if not sections.can_generate:
        _echo("  ⚠ No positive prompt found; this style cannot drive generation")
    return 0


def _generate(app: StyleApp, args: argparse.Namespace) -> int:
    if args.style:
        try:
            if app.load_history_item(args.style) is None:
                print(f"✗  No saved style {args.style}", file=sys.stderr)
                return 2
        except StyleError as exc:
            print(f"✗  {exc}", file=sys.stderr)
            return 2
        lab = app.require_lab()
        prompt = app.sections.positive_prompt
    else:
        lab = GenerationLab(app.key_selector, cost_tracker=app.cost_tracker)
        prompt = args.prompt

    product = Path(args.product)
    try:
        lab.set_product_image(ingest_one((product.name, product.read_bytes(), None)))
    except (OSError, IngestError) as exc:
        print(f"✗  Cannot read product image: {exc}", file=sys.stderr)
        return 2
    lab.set_model(args.model)

    output_dir = Path(args.output_dir) / f"{product.stem}_{int(time.time())}"
    output_dir.mkdir(parents=True, exist_ok=True)

    saved = 0
    for _ in range(max(args.count, 1)):
        _echo(f"  ◌ Generating with {lab.model}…")
        try:
            image = lab.generate(prompt)
        except SessionLimitError as exc:
            _echo(f"  ⚠ {exc}")
            break
        except StyleError as exc:
            print(f"\n✗  {exc}", file=sys.stderr)
            return 1
        mime, data = split_data_url(image.url)
        ext = mime.split("/")[-1].replace("jpeg", "jpg")
        path = output_dir / f"ecom-variation-{image.id}.{ext}"
        path.write_bytes(data)
        saved += 1
        _echo(f"  ✓ {path}")

    summary = app.cost_tracker.summary()
    _echo(f"\n  {saved} image(s) saved to {output_dir}  (cost ~${summary['total']:.4f})\n")
    return 0


def _history(app: StyleApp, delete_id: Optional[str]) -> int:
    if delete_id:
        if not app.delete_history_item(delete_id):
            print(f"✗  No saved style {delete_id}", file=sys.stderr)
            return 1
        _echo(f"  ✓ Deleted {delete_id}")
        return 0

    entries = app.history
    if not entries:
        _echo("  No saved styles yet.")
        return 0
    for entry in entries:
        when = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
        _echo(f"  {entry.id}  {when}  {len(entry.reference_images)} reference images")
    return 0


def _list_models() -> None:
    print("\nAnalysis Model")
    print("─" * 40)
    print(f"  {style_core.ANALYSIS_MODEL}")

    print("\nImage Models")
    print("─" * 40)
    for m in style_core.IMAGE_MODELS:
        paid = "  [paid key]" if m["paid"] else ""
        print(f"  {m['alias']:<6} {m['id']}{paid}")
        print(f"         {m['description']}")
    print()


def _echo(msg: str) -> None:
    print(msg, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
