from __future__ import annotations

import os

import pytest

from bastion.core.classification.engine import ClassificationEngine
from bastion.core.classification.store import ClassificationStore
from bastion.core.config.manager import ConfigManager
from bastion.core.config.paths import ConfigFsPaths


class _Bus:
    def __init__(self):
        self.events = []

    def publish_nowait(self, ev):
        self.events.append(ev)

    def types(self):
        return [e.event_type for e in self.events]


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated repo root with config/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def store(tmp_path):
    return ClassificationStore(db_path=str(tmp_path / "runtime" / "classification.sqlite"))


@pytest.fixture
def bus():
    return _Bus()


@pytest.fixture
def engine(store, bus):
    # no built-ins seeded; tests add the rules they need
    return ClassificationEngine(store=store, event_bus=bus)
