"""Logging for the Style Architect web app and CLI.

configure() runs once at start-up; modules log through logging.getLogger(__name__).
Analysis and the progress ticker run on their own threads, so every line
carries the thread name. The CLI keeps the console terse and can skip the
file handler entirely.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

LOGS_DIR = Path(__file__).parent / "logs"
LOG_FILE = LOGS_DIR / "app.log"

_CONSOLE_FMT = "%(asctime)s  %(levelname)-7s  [%(threadName)s] %(name)s: %(message)s"
_FILE_FMT = (
    "%(asctime)s  %(levelname)-7s  [%(threadName)s] %(name)-12s  "
    "%(filename)s:%(lineno)d: %(message)s"
)
_DATE_FMT = "%Y-%m-%d %H:%M:%S"

# HTTP clients, the dev server, the Gemini SDK and Pillow's plugin loader
_NOISY = ("urllib3", "httpx", "httpcore", "werkzeug", "google_genai", "PIL")


def configure(
    level: str = "INFO",
    log_file: Union[bool, str, Path] = True,
    max_bytes: int = 5 * 1024 * 1024,
    backups: int = 5,
) -> None:
    """Attach console and (optionally) rotating file handlers to the root logger.

    ``log_file`` may be False (console only), True (logs/app.log) or a path.
    Later calls are no-ops once the root logger has handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt=_DATE_FMT))
    root.addHandler(console)

    path: Optional[Path] = None
    if log_file is True:
        path = LOG_FILE
    elif log_file:
        path = Path(log_file)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FMT, datefmt=_DATE_FMT))
        root.addHandler(fh)

    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
