"""
Pytest configuration and shared fixtures for lexisync tests.
"""

import os
import sys
from pathlib import Path
from typing import Dict

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lexisync.models.translation import Tag, TranslationMap
from lexisync.storage.local import LocalStore
from lexisync.utils.config import LiveUpdateConfig
from tests.fixtures import TranslationFixtures


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host LEXISYNC_* variables out of the tests."""
    for key in list(os.environ):
        if key.startswith("LEXISYNC_"):
            monkeypatch.delenv(key)


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    """Local store rooted in a temporary directory."""
    return LocalStore(tmp_path / "translations.json")


@pytest.fixture
def base_entries() -> Dict[str, object]:
    """Entries shared by local, remote and ancestor in sync scenarios."""
    return {
        "Start Game": ("Commencer", Tag.HUMAN),
        "Options": "Options",
        "Quit": ("Quitter", Tag.VALIDATED),
    }


@pytest.fixture
def ancestor_map(base_entries) -> TranslationMap:
    return TranslationFixtures.create_map(base_entries)


@pytest.fixture
def fast_live_config() -> LiveUpdateConfig:
    """Live update timings short enough for tests."""
    return LiveUpdateConfig(base_delay=0.01, max_delay=0.05, heartbeat_timeout=2.0)
