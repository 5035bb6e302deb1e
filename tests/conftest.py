from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep logs and data in temp and ignore the caller's environment."""
    data_dir = tmp_path / "cubemail"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("CUBEMAIL_DATA_DIR", str(data_dir))
    monkeypatch.delenv("CUBEMAIL_PASSWORD", raising=False)
