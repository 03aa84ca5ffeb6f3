"""Style Architect: Flask web application."""

from __future__ import annotations

import json
import logging
import os
import queue
import threading
from pathlib import Path
from typing import Dict, Generator, List, Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from flask_cors import CORS

load_dotenv()

import log_setup
log_setup.configure(os.environ.get("LOG_LEVEL", "INFO"))

import costs
import style_core
from controller import StyleApp
from errors import (
    CredentialError,
    GenerationBusyError,
    GenerationError,
    IngestError,
    SessionLimitError,
    StateError,
    StyleError,
    ValidationError,
)
from history import SqliteHistoryStore
from ingest import FileSource, ingest_one
from keys import EnvKeySelector, default_api_key
from records import UploadedImage, new_id

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

BASE_DIR = Path(__file__).parent
DB_PATH = Path(os.environ.get("STYLE_DB_PATH") or BASE_DIR / "history.db")

app = Flask(__name__)
CORS(app)

# Active SSE queues: run_id -> Queue. Controller events go to the running analysis.
_run_queues: Dict[str, queue.Queue] = {}
_run_queues_lock = threading.Lock()
_active_run: Optional[str] = None


def _push_event(event: Dict) -> None:
    with _run_queues_lock:
        q = _run_queues.get(_active_run) if _active_run else None
    if q is None:
        return
    try:
        q.put_nowait(event)
    except queue.Full:
        log.warning("SSE queue full, dropping %s event", event.get("stage"))


controller = StyleApp(
    store=SqliteHistoryStore(DB_PATH),
    key_selector=EnvKeySelector(),
    progress_cb=_push_event,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sse_event(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


def _open_run() -> str:
    global _active_run
    run_id = new_id()
    with _run_queues_lock:
        _run_queues[run_id] = queue.Queue(maxsize=500)
        _active_run = run_id
    return run_id


def _close_run(run_id: str) -> None:
    global _active_run
    with _run_queues_lock:
        if _active_run == run_id:
            _active_run = None
        q = _run_queues.get(run_id)
    if q is not None:
        try:
            q.put_nowait(None)
        except queue.Full:
            pass  # the stream still stops on the terminal analysis event


def _cleanup_queue(run_id: str) -> None:
    with _run_queues_lock:
        _run_queues.pop(run_id, None)


def _run_analysis_thread(run_id: str, images: List[UploadedImage]) -> None:
    try:
        controller.run_analysis(images)
    finally:
        _close_run(run_id)


def _uploaded(field: str) -> List[FileSource]:
    return [
        (f.filename or "", f.read(), f.mimetype or None)
        for f in request.files.getlist(field)
    ]


def _error_response(exc: StyleError):
    if isinstance(exc, (StateError, GenerationBusyError, SessionLimitError)):
        code = 409
    elif isinstance(exc, (ValidationError, IngestError)):
        code = 400
    elif isinstance(exc, CredentialError):
        code = 401
    elif isinstance(exc, GenerationError):
        code = 502
    else:
        code = 500
    return jsonify({"error": str(exc), "kind": type(exc).__name__}), code


# ---------------------------------------------------------------------------
# Routes: service info
# ---------------------------------------------------------------------------

@app.get("/")
def index():
    return jsonify({
        "name": "Style Architect",
        "analysis_model": style_core.ANALYSIS_MODEL,
        "image_models": [m["id"] for m in style_core.IMAGE_MODELS],
    })


@app.get("/api/models")
def api_models():
    return jsonify({
        "analysis_model": style_core.ANALYSIS_MODEL,
        "image_models": style_core.IMAGE_MODELS,
        "default_image_model": style_core.DEFAULT_IMAGE_MODEL,
        "api_key_available": bool(default_api_key()),
        "paid_key_selected": controller.key_selector.has_selected_key(),
    })


@app.get("/api/state")
def api_state():
    return jsonify(controller.snapshot())


# ---------------------------------------------------------------------------
# Routes: reference images & analysis
# ---------------------------------------------------------------------------

@app.post("/api/images")
def api_add_images():
    files = _uploaded("files")
    if not files:
        return jsonify({"error": "No files uploaded"}), 400
    try:
        result = controller.add_images(files)
    except StyleError as exc:
        return _error_response(exc)
    return jsonify(result.to_dict())


@app.delete("/api/images/<image_id>")
def api_remove_image(image_id: str):
    try:
        removed = controller.remove_image(image_id)
    except StyleError as exc:
        return _error_response(exc)
    if not removed:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"images": [img.to_dict() for img in controller.images]})


@app.post("/api/analyze")
def api_analyze():
    if not default_api_key():
        return jsonify({"error": "GEMINI_API_KEY is not configured"}), 400
    run_id = _open_run()
    try:
        images = controller.begin_analysis()
    except StyleError as exc:
        _close_run(run_id)
        _cleanup_queue(run_id)
        return _error_response(exc)

    t =threading.Thread(target=_run_analysis_thread, args=(run_id, images), daemon=True)
    t.start()
    return jsonify({"run_id": run_id, "status": controller.status.value}), 202


@app.get("/api/stream/<run_id>")
def api_stream(run_id: str):
    """Server-Sent Events stream of one analysis run."""
    with _run_queues_lock:
        q = _run_queues.get(run_id)
    if q is None:
        return jsonify({"error": "Unknown run"}), 404

    def generate() -> Generator[str, None, None]:
        yield _sse_event({"type": "heartbeat", "run_id": run_id})
        try:
            while True:
                try:
                    event = q.get(timeout=25)
                except queue.Empty:
                    yield _sse_event({"type": "heartbeat"})
                    continue

                if event is None:
                    yield _sse_event({"type": "done"})
                    break

                yield _sse_event(event)

                if event.get("stage") == "analysis" and event.get("status") in ("completed", "failed"):
                    yield _sse_event({"type": "done"})
                    break
        finally:
            _cleanup_queue(run_id)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@app.post("/api/reset")
def api_reset():
    try:
        controller.reset()
    except StyleError as exc:
        return _error_response(exc)
    return jsonify(controller.snapshot())


# ---------------------------------------------------------------------------
# Routes: history
# ---------------------------------------------------------------------------

@app.get("/api/history")
def api_history():
    return jsonify([entry.summary() for entry in controller.history])


@app.post("/api/history/<entry_id>/load")
def api_load_history(entry_id: str):
    try:
        entry = controller.load_history_item(entry_id)
    except StyleError as exc:
        return _error_response(exc)
    if entry is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(controller.snapshot())


@app.delete("/api/history/<entry_id>")
def api_delete_history(entry_id: str):
    if not controller.delete_history_item(entry_id):
        return jsonify({"error": "Not found"}), 404
    return jsonify([entry.summary() for entry in controller.history])


# ---------------------------------------------------------------------------
# Routes: product image lab
# ---------------------------------------------------------------------------

@app.post("/api/product")
def api_set_product():
    files = _uploaded("file")
    if not files:
        return jsonify({"error": "No file uploaded"}), 400
    try:
        lab = controller.require_lab()
        lab.set_product_image(ingest_one(files[0]))
    except StyleError as exc:
        return _error_response(exc)
    return jsonify(lab.snapshot())


@app.delete("/api/product")
def api_clear_product():
    try:
        lab = controller.require_lab()
    except StyleError as exc:
        return _error_response(exc)
    lab.set_product_image(None)
    return jsonify(lab.snapshot())


@app.post("/api/generate")
def api_generate():
    body = request.get_json(silent=True) or {}
    model = body.get("model") or None
    try:
        lab = controller.require_lab()
        image = controller.generate(model, lab=lab)
    except StyleError as exc:
        return _error_response(exc)
    return jsonify({"image": image.to_dict(), "lab": lab.snapshot()})


@app.post("/api/key")
def api_select_key():
    body = request.get_json(silent=True) or {}
    key = (body.get("api_key") or "").strip()
    selector = controller.key_selector
    if not isinstance(selector, EnvKeySelector):
        return jsonify({"error": "Key selection is not supported"}), 400
    selector.select_key(key)
    return jsonify({"paid_key_selected": selector.has_selected_key()})


@app.get("/api/costs")
def api_costs():
    return jsonify({
        "session": controller.cost_tracker.summary(),
        "totals": costs.get_totals(),
    })


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    print(f"\n  Style Architect → http://localhost:{port}\n")
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
