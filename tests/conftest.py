"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskrouter.config import HOME_ENV_VAR


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the data directory at a per-test temp dir."""
    home = tmp_path / "taskrouter-home"
    monkeypatch.setenv(HOME_ENV_VAR, str(home))
    return home
