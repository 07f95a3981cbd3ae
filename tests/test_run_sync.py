from __future__ import annotations

import argparse
import asyncio
import importlib.util
from pathlib import Path

import pytest

from src.timetable_sync import config as config_module
from src.timetable_sync.config import SyncConfig
from src.timetable_sync.models import ConversationState
from src.timetable_sync.store import JsonStateStore
from tests.conftest import CLASS_NAME, FakeSource, timetable_grid

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "run_sync.py"
LINK = "https://docs.google.com/spreadsheets/d/x"


@pytest.fixture
def run_sync(monkeypatch, tmp_path):
    spec = importlib.util.spec_from_file_location("run_sync", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    monkeypatch.setattr(
        config_module,
        "_config",
        SyncConfig(_env_file=None, data_dir=str(tmp_path / "data")),
    )
    monkeypatch.setattr(module, "setup_logging", lambda **kwargs: None)
    return module


def test_once_dry_run_skips_broken_state_files(run_sync, monkeypatch, tmp_path) -> None:
    store = JsonStateStore(tmp_path / "data")
    for chat_id in (-20, 10):
        store.save(ConversationState(conversation_id=chat_id, class_name=CLASS_NAME, link=LINK))
    store.path_for(30).write_text("not json", encoding="utf-8")
    source = FakeSource(timetable_grid([("Понедельник", [("Алгебра", "Иванова", "101")])]))
    monkeypatch.setattr(run_sync, "GoogleSheetSource", lambda timeout_seconds: source)

    args = argparse.Namespace(once=True, dry_run=True, force_send=False, chat=None)
    exit_code = asyncio.run(run_sync.main(args))

    assert exit_code == 0
    assert source.links == [LINK, LINK]
    # Dry runs never write message ids
    assert store.load(10).last_projection is None
