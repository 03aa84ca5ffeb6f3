"""Persistence for saved style analyses.

The history is a single JSON array stored under one namespaced key and
rewritten wholesale on every change, newest entry first, capped at
MAX_HISTORY entries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence

from records import SavedStyle, UploadedImage, new_id, now_ms

log = logging.getLogger(__name__)

HISTORY_KEY = "prompt_architect_history"
MAX_HISTORY = 10
DB_PATH = Path(__file__).parent / "history.db"


class HistoryStore:
    """Load/save interface. ``add`` and ``delete`` are built on top of it."""

    def load(self) -> List[SavedStyle]:
        raise NotImplementedError

    def save(self, entries: Sequence[SavedStyle]) -> None:
        raise NotImplementedError

    def add(self, content: str, reference_images: Sequence[UploadedImage]) -> SavedStyle:
        refs = list(reference_images)
        entry = SavedStyle(
            id=new_id(),
            timestamp=now_ms(),
            thumbnail=refs[0].data_url if refs else "",
            content=content,
            reference_images=refs,
        )
        entries = [entry] + self.load()
        self.save(entries[:MAX_HISTORY])
        log.info("Saved style %s (%d reference images)", entry.id, len(refs))
        return entry

    def delete(self, entry_id: str) -> bool:
        entries = self.load()
        kept = [e for e in entries if e.id != entry_id]
        if len(kept) == len(entries):
            return False
        self.save(kept)
        log.info("Deleted style %s", entry_id)
        return True

    def get(self, entry_id: str) -> Optional[SavedStyle]:
        for e in self.load():
            if e.id == entry_id:
                return e
        return None


def _decode_entries(raw: Optional[str]) -> List[SavedStyle]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
        return [SavedStyle.from_dict(d) for d in data]
    except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as exc:
        log.error("Failed to parse history: %s", exc)
        return []


def _encode_entries(entries: Sequence[SavedStyle]) -> str:
    return json.dumps([e.to_dict() for e in entries])


class MemoryHistoryStore(HistoryStore):
    """Keeps the serialised array in memory. Used by tests and throwaway sessions."""

    def __init__(self, entries: Sequence[SavedStyle] = ()) -> None:
        self._raw: Optional[str] = _encode_entries(entries) if entries else None

    def load(self) -> List[SavedStyle]:
        return _decode_entries(self._raw)

    def save(self, entries: Sequence[SavedStyle]) -> None:
        self._raw = _encode_entries(entries)


class SqliteHistoryStore(HistoryStore):
    """One key/value row in a small SQLite file."""

    def __init__(self, db_path: Optional[Path] = None, key: str = HISTORY_KEY) -> None:
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.key = key
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self.db_path))
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL")
        return con

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,   -- JSON
                    updated_at  DATETIME DEFAULT (datetime('now'))
                )
                """
            )

    def load(self) -> List[SavedStyle]:
        with self._conn() as con:
            row = con.execute("SELECT value FROM kv WHERE key=?", (self.key,)).fetchone()
        return _decode_entries(row["value"] if row else None)

    def save(self, entries: Sequence[SavedStyle]) -> None:
        with self._conn() as con:
            con.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now')) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (self.key, _encode_entries(entries)),
            )
