"""Application state: the analysis state machine and the image lab.

One ``StyleApp`` is one user session.  The top-level state only tracks the
style analysis; product image generation lives in a ``GenerationLab`` that
exists while a completed analysis is on screen.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import costs
import style_core
from errors import (
    CredentialError,
    EmptyPromptError,
    GenerationBusyError,
    GenerationError,
    MissingProductImageError,
    SessionLimitError,
    StateError,
    StyleError,
    ValidationError,
)
from history import HistoryStore
from ingest import FileSource, IngestResult, ingest_files, ingest_paths
from keys import EnvKeySelector, KeySelector, default_api_key
from records import GeneratedImage, SavedStyle, UploadedImage, new_id
from sections import ExtractedSections, extract_sections

log = logging.getLogger(__name__)

MAX_GENERATIONS = 5
TICK_INTERVAL = 2.0

INITIAL_LOADING_STEP = "Initializing analysis..."
LOADING_MESSAGES = [
    "Reading visual language...",
    "Extracting lighting geometry...",
    "Analyzing compositional balance...",
    "Decoding mood and atmosphere...",
    "Synthesizing generation prompts...",
    "Applying anti-artifact logic...",
    "Finalizing style specs...",
]

ANALYSIS_FAILED_MESSAGE = "Analysis failed. Please try again."
SESSION_LIMIT_MESSAGE = "Session limit reached. Restart for more variations."
PRO_KEY_MESSAGE = "Pro model error: Please re-select a valid paid API key."


class AppStatus(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Progress ticker
# ---------------------------------------------------------------------------

class ProgressTicker:
    """Cycles through status phrases on a background thread until stopped."""

    def __init__(
        self,
        on_message: Callable[[str], None],
        messages: Sequence[str] = tuple(LOADING_MESSAGES),
        interval: float = TICK_INTERVAL,
    ) -> None:
        self.on_message = on_message
        self.messages = list(messages)
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="progress-ticker", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        idx = 0
        while not self._stop.wait(self.interval):
            idx = (idx + 1) % len(self.messages)
            self.on_message(self.messages[idx])

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


# ---------------------------------------------------------------------------
# Generation lab
# ---------------------------------------------------------------------------

class GenerationLab:
    """Product image generation for one completed analysis."""

    def __init__(
        self,
        key_selector: KeySelector,
        client_factory: Optional[style_core.ClientFactory] = None,
        cost_tracker: Optional[costs.CostTracker] = None,
        max_generations: int = MAX_GENERATIONS,
    ) -> None:
        self.key_selector = key_selector
        self.client_factory = client_factory
        self.cost_tracker = cost_tracker
        self.max_generations = max_generations

        self.product_image: Optional[UploadedImage] = None
        self.generated: List[GeneratedImage] = []
        self.model: str = style_core.DEFAULT_IMAGE_MODEL
        self.is_generating = False
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        return max(self.max_generations - len(self.generated), 0)

    def set_product_image(self, image: Optional[UploadedImage]) -> None:
        self.product_image = image

    def set_model(self, name: str) -> None:
        self.model = style_core.resolve_image_model(name)["id"]

    def _check_preconditions(self, prompt: str) -> None:
        if self.product_image is None:
            raise MissingProductImageError("Upload a product image first.")
        if not prompt or not prompt.strip():
            raise EmptyPromptError("No positive prompt was found in the analysis.")
        if len(self.generated) >= self.max_generations:
            raise SessionLimitError(SESSION_LIMIT_MESSAGE)

    def _paid_key(self) -> str:
        if not self.key_selector.has_selected_key():
            log.info("No paid key selected, opening key selection")
            self.key_selector.open_select_key()
            if not self.key_selector.has_selected_key():
                raise CredentialError("A paid API key is required for the Pro model.")
        return self.key_selector.api_key()

    def generate(self, prompt: str) -> GeneratedImage:
        """Generate one variation. Raises before calling the model if a precondition fails."""
        if not self._lock.acquire(blocking=False):
            raise GenerationBusyError("A generation is already running.")
        try:
            self._check_preconditions(prompt)
            model = style_core.resolve_image_model(self.model)
            api_key = self._paid_key() if model["paid"] else default_api_key()

            self.is_generating = True
            try:
                url = style_core.generate_ecom_image(
                    self.product_image,
                    prompt,
                    model["id"],
                    api_key=api_key,
                    client_factory=self.client_factory,
                    cost_tracker=self.cost_tracker,
                )
            except CredentialError as exc:
                log.warning("Credential rejected for %s: %s", model["id"], exc)
                self.key_selector.open_select_key()
                raise CredentialError(PRO_KEY_MESSAGE) from exc
            except GenerationError as exc:
                raise exc.__class__(f"Generation failed. {exc}") from exc
            finally:
                self.is_generating = False

            image = GeneratedImage(id=new_id(), url=url)
            self.generated.insert(0, image)
            log.info("Generated variation %s (%d/%d)", image.id, len(self.generated), self.max_generations)
            return image
        finally:
            self._lock.release()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "product_image": self.product_image.to_dict() if self.product_image else None,
            "generated": [g.to_dict() for g in self.generated],
            "model": self.model,
            "is_generating": self.is_generating,
            "remaining": self.remaining,
        }


# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------

class StyleApp:
    """Analysis state machine plus history and the current lab."""

    def __init__(
        self,
        store: HistoryStore,
        key_selector: Optional[KeySelector] = None,
        client_factory: Optional[style_core.ClientFactory] = None,
        progress_cb: Optional[Callable[[Dict], None]] = None,
        tick_interval: float = TICK_INTERVAL,
        log_costs: bool = True,
    ) -> None:
        self.store = store
        self.key_selector = key_selector or EnvKeySelector()
        self.client_factory = client_factory
        self.progress_cb = progress_cb
        self.tick_interval = tick_interval
        self.log_costs = log_costs
        self.cost_tracker = costs.CostTracker()

        self.images: List[UploadedImage] = []
        self.status = AppStatus.IDLE
        self.result = ""
        self.error = ""
        self.loading_step = INITIAL_LOADING_STEP
        self.lab: Optional[GenerationLab] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------

    def _emit(self, stage: str, status: str, message: str, data: Optional[Dict] = None) -> None:
        event: Dict[str, Any] = {
            "stage": stage,
            "status": status,
            "message": message,
            "ts": time.time(),
        }
        if data:
            event["data"] = data
        if self.progress_cb:
            self.progress_cb(event)
        lvl = logging.WARNING if status == "failed" else logging.DEBUG
        log.log(lvl, "%s — %s", stage, message)

    def _log_costs(self, label: str, since: int) -> None:
        if not self.log_costs:
            return
        try:
            costs.append_cost_log(label, self.cost_tracker, since)
        except OSError as exc:
            log.warning("Cost log write failed: %s", exc)

    # ------------------------------------------------------------------
    # Reference images
    # ------------------------------------------------------------------

    def _require_editable(self) -> None:
        if self.status not in (AppStatus.IDLE, AppStatus.ERROR):
            raise StateError(f"Images cannot be changed while {self.status.value.lower()}")

    def add_images(self, files: Sequence[FileSource]) -> IngestResult:
        with self._lock:
            self._require_editable()
            result = ingest_files(files, self.images)
            self.images = result.images
            return result

    def add_image_paths(self, paths: Iterable[str]) -> IngestResult:
        with self._lock:
            self._require_editable()
            result = ingest_paths(paths, self.images)
            self.images = result.images
            return result

    def remove_image(self, image_id: str) -> bool:
        with self._lock:
            self._require_editable()
            before = len(self.images)
            self.images = [img for img in self.images if img.id != image_id]
            return len(self.images) != before

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def begin_analysis(self) -> List[UploadedImage]:
        """IDLE/ERROR → ANALYZING. Returns the images the analysis will use."""
        with self._lock:
            if self.status not in (AppStatus.IDLE, AppStatus.ERROR):
                raise StateError(f"Cannot start analysis while {self.status.value.lower()}")
            if not self.images:
                raise ValidationError("Upload at least one reference image.")
            self.status = AppStatus.ANALYZING
            self.error = ""
            self.loading_step = INITIAL_LOADING_STEP
            images = list(self.images)
        self._emit("analysis", "started", f"Analyzing {len(images)} reference images…")
        return images

    def _set_loading_step(self, message: str) -> None:
        with self._lock:
            if self.status is not AppStatus.ANALYZING:
                return
            self.loading_step = message
        self._emit("analysis", "progress", message)

    def run_analysis(self, images: Optional[Sequence[UploadedImage]] = None) -> Optional[str]:
        """Run the in-flight analysis to completion.

        Returns the raw analysis text on success; on failure the app moves to
        ERROR and None is returned.
        """
        with self._lock:
            if self.status is not AppStatus.ANALYZING:
                raise StateError("No analysis has been started")
            images = list(images) if images is not None else list(self.images)

        since = len(self.cost_tracker.items)
        ticker = ProgressTicker(self._set_loading_step, interval=self.tick_interval)
        ticker.start()
        try:
            output = style_core.analyze_images(
                images,
                client_factory=self.client_factory,
                cost_tracker=self.cost_tracker,
            )
            entry = self.store.add(output, images)
        except Exception as exc:
            err_msg = str(exc) or ANALYSIS_FAILED_MESSAGE
            log.error("Analysis failed: %s", err_msg, exc_info=not isinstance(exc, StyleError))
            with self._lock:
                self.error = err_msg
                self.status = AppStatus.ERROR
            self._emit("analysis", "failed", err_msg)
            return None
        finally:
            ticker.stop()
            self._log_costs("analysis", since)

        with self._lock:
            self.result = output
            self.status = AppStatus.COMPLETED
            self.lab = self._new_lab()
        self._emit(
            "analysis",
            "completed",
            "Reverse engineering complete",
            {"history_id": entry.id, "sections": self.sections.to_dict()},
        )
        return output

    def start_analysis(self) -> Optional[str]:
        images = self.begin_analysis()
        return self.run_analysis(images)

    def reset(self) -> None:
        with self._lock:
            if self.status is AppStatus.ANALYZING:
                raise StateError("Cannot reset while an analysis is running")
            self.images = []
            self.status = AppStatus.IDLE
            self.result = ""
            self.error = ""
            self.lab = None
        self._emit("app", "reset", "Ready for a new style")

    @property
    def sections(self) -> ExtractedSections:
        return extract_sections(self.result)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[SavedStyle]:
        return self.store.load()

    def load_history_item(self, entry_id: str) -> Optional[SavedStyle]:
        with self._lock:
            if self.status is AppStatus.ANALYZING:
                raise StateError("Cannot load a saved style while an analysis is running")
            entry = self.store.get(entry_id)
            if entry is None:
                return None
            self.result = entry.content
            self.images = list(entry.reference_images)
            self.error = ""
            self.status = AppStatus.COMPLETED
            self.lab = self._new_lab()
        self._emit("history", "loaded", f"Loaded saved style {entry_id}")
        return entry

    def delete_history_item(self, entry_id: str) -> bool:
        return self.store.delete(entry_id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _new_lab(self) -> GenerationLab:
        return GenerationLab(
            self.key_selector,
            client_factory=self.client_factory,
            cost_tracker=self.cost_tracker,
        )

    def require_lab(self) -> GenerationLab:
        with self._lock:
            if self.status is not AppStatus.COMPLETED or self.lab is None:
                raise StateError("Product images can only be generated from a completed analysis")
            return self.lab

    def generate(
        self, model: Optional[str] = None, lab: Optional[GenerationLab] = None
    ) -> GeneratedImage:
        """Generate into ``lab`` (default: the current lab) with the positive prompt."""
        if lab is None:
            lab = self.require_lab()
        if model:
            lab.set_model(model)
        since = len(self.cost_tracker.items)
        self._emit("generation", "started", f"Generating with {lab.model}…")
        try:
            image = lab.generate(self.sections.positive_prompt)
        except StyleError as exc:
            self._emit("generation", "failed", str(exc))
            raise
        finally:
            self._log_costs("generation", since)
        self._emit("generation", "completed", "Variation ready", {"id": image.id})
        return image

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": self.status.value,
                "images": [img.to_dict() for img in self.images],
                "result": self.result,
                "sections": self.sections.to_dict() if self.result else None,
                "error": self.error,
                "loading_step": self.loading_step if self.status is AppStatus.ANALYZING else "",
                "lab": self.lab.snapshot() if self.lab else None,
            }
