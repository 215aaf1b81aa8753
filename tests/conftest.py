from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the user's real config and data locations."""
    monkeypatch.setenv("TASKFLOW_CONFIG", str(tmp_path / "no-config.yaml"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.delenv("TASKFLOW_DATA_FILE", raising=False)
    monkeypatch.delenv("TASKFLOW_LOG_LEVEL", raising=False)


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    return tmp_path / "taskflow-pm" / "taskflow-data.json"
