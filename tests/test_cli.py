import pytest

import style_cli
import style_core
from history import SqliteHistoryStore


@pytest.fixture
def db(tmp_path):
    return tmp_path / "history.db"


def test_list_models(capsys):
    assert style_cli.main(["--list-models"]) == 0
    out = capsys.readouterr().out
    assert style_core.FLASH_IMAGE_MODEL in out
    assert style_core.PRO_IMAGE_MODEL in out


def test_history_empty_and_delete_missing(db, capsys):
    assert style_cli.main(["--db", str(db), "history"]) == 0
    assert "No saved styles yet." in capsys.readouterr().out
    assert style_cli.main(["--db", str(db), "history", "--delete", "nope"]) == 1


def test_analyze_then_generate_from_saved_style(db, tmp_path, gemini, png_bytes, monkeypatch, capsys):
    monkeypatch.setattr(style_core, "_default_client", gemini.factory)
    monkeypatch.setattr(style_cli.StyleApp, "__init__", _quiet_init(style_cli.StyleApp.__init__))
    ref = tmp_path / "look.png"
    ref.write_bytes(png_bytes)

    assert style_cli.main(["--db", str(db), "analyze", str(ref)]) == 0
    (entry,) = SqliteHistoryStore(db).load()
    assert "soft window light" in capsys.readouterr().out

    out_dir = tmp_path / "out"
    rc = style_cli.main([
        "--db", str(db), "generate",
        "--product", str(ref), "--style", entry.id,
        "--count", "7", "--output-dir", str(out_dir),
    ])
    assert rc == 0
    saved = list(out_dir.rglob("ecom-variation-*.png"))
    assert len(saved) == 5
    assert saved[0].read_bytes() == b"generated-bytes"
    assert "Session limit reached" in capsys.readouterr().out


def test_generate_with_unknown_style(db, tmp_path, png_bytes):
    ref = tmp_path / "look.png"
    ref.write_bytes(png_bytes)
    assert style_cli.main(["--db", str(db), "generate", "--product", str(ref), "--style", "nope"]) == 2


def _quiet_init(init):
    def wrapper(self, *args, **kwargs):
        kwargs["log_costs"] = False
        init(self, *args, **kwargs)
    return wrapper
