"""
Pytest configuration and fixtures for cnsync tests.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from _cnsync_test_helpers import TEST_VIEW_KEY, FakeDaemon, FakeKeyManager

from cnsync.settings import reset_settings


@pytest.fixture
def view_key() -> str:
    """Test private view key"""
    return TEST_VIEW_KEY


@pytest.fixture
def daemon() -> FakeDaemon:
    return FakeDaemon()


@pytest.fixture
def key_manager() -> FakeKeyManager:
    return FakeKeyManager()


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary data directory set as CNSYNC_DATA_DIR."""
    path = tmp_path / ".cnsync"
    path.mkdir(parents=True)
    monkeypatch.setenv("CNSYNC_DATA_DIR", str(path))
    monkeypatch.delenv("CNSYNC_CONFIG_FILE", raising=False)
    return path


@pytest.fixture(autouse=True)
def reset_settings_fixture() -> Generator[None, None, None]:
    """Reset cached settings before and after each test."""
    reset_settings()
    yield
    reset_settings()
