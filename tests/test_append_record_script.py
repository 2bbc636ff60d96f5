"""Tests for the manual ledger append script."""

import importlib.util
from pathlib import Path
import sys

from sqlalchemy import create_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annulment_bot import config  # noqa: E402
from annulment_bot.db import get_engine  # noqa: E402
from annulment_bot.ledger import Ledger  # noqa: E402


def _load_script():
    spec = importlib.util.spec_from_file_location("append_record", ROOT / "scripts" / "append_record.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_append_record_writes_requested_partition(monkeypatch, tmp_path, capsys):
    db_url = f"sqlite:///{tmp_path / 'manual.db'}"
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("DATABASE_URL", db_url)
    config.get_settings.cache_clear()
    get_engine.cache_clear()

    script = _load_script()
    key = script.append_record(
        [
            "--ticket", "T-7",
            "--violation", "Parking",
            "--reason", "Wrong plate",
            "--approved-by", "alice, bob",
            "--partition", "2025-10",
        ]
    )

    assert key == "2025-10"
    assert "T-7" in capsys.readouterr().out
    rows = Ledger(create_engine(db_url, future=True)).read_partition("2025-10")
    assert rows[0]["ticket"] == "T-7"
    assert rows[0]["status"] == "approved"
    assert rows[0]["approved_by"] == "alice, bob"
    assert rows[0]["amount"] == ""

    get_engine.cache_clear()
    config.get_settings.cache_clear()
