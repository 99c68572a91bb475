# tests/conftest.py
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Run every test against defaults: no config.json, no BARCACHE_* env."""
    for name in list(os.environ):
        if name.startswith("BARCACHE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BARCACHE_CONFIG_FILE", str(tmp_path / "config.json"))

    from config.settings import CONFIG

    CONFIG.reload()
    yield CONFIG
    monkeypatch.undo()
    CONFIG.reload()


@pytest.fixture
def bar_times():
    """Ten one-minute bar timestamps."""
    start = datetime(2024, 3, 1, 10, 0)
    return [start + timedelta(minutes=i) for i in range(10)]


@pytest.fixture
def session():
    from barcache.shared import InMemoryKeyValueStore
    from barcache.session import EngineSession

    s = EngineSession("test", agent_name="agent", shared_store=InMemoryKeyValueStore())
    yield s
    s.close()
