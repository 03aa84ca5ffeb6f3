"""API key lookup and the paid-key selection side channel.

The Pro image model is billed, so it runs on a separately selected key.
A selector answers "is a paid key selected?" and can ask for one.  Asking
carries no outcome signal; callers re-check ``has_selected_key()`` after.
"""

from __future__ import annotations

import getpass
import logging
import os
from typing import Callable, Optional

from dotenv import load_dotenv

log = logging.getLogger(__name__)

PAID_KEY_ENV = "GEMINI_PAID_API_KEY"


def default_api_key() -> str:
    """Key for the free-tier calls (analysis and the Flash image model)."""
    return os.environ.get("GEMINI_API_KEY", "") or os.environ.get("API_KEY", "")


class KeySelector:
    def has_selected_key(self) -> bool:
        return bool(self.api_key())

    def open_select_key(self) -> None:
        raise NotImplementedError

    def api_key(self) -> str:
        raise NotImplementedError


class EnvKeySelector(KeySelector):
    """Paid key from the environment; selecting re-reads ``.env``."""

    def __init__(self, env_var: str = PAID_KEY_ENV) -> None:
        self.env_var = env_var
        self._selected: Optional[str] = None

    def api_key(self) -> str:
        return self._selected or os.environ.get(self.env_var, "")

    def select_key(self, key: str) -> None:
        self._selected = key.strip() or None
        log.info("Paid API key %s", "selected" if self._selected else "cleared")

    def open_select_key(self) -> None:
        # A key dropped into .env after start-up is picked up here
        self._selected = None
        load_dotenv(override=True)
        log.info("Reloaded environment for %s (present=%s)", self.env_var, self.has_selected_key())


class PromptKeySelector(EnvKeySelector):
    """Asks on the terminal. Used by the CLI."""

    def __init__(
        self,
        env_var: str = PAID_KEY_ENV,
        prompt: Callable[[str], str] = getpass.getpass,
    ) -> None:
        super().__init__(env_var)
        self._prompt = prompt

    def open_select_key(self) -> None:
        try:
            key = self._prompt("Paid Gemini API key for the Pro model: ")
        except (EOFError, KeyboardInterrupt):
            key = ""
        self.select_key(key or "")
