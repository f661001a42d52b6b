"""Tests for platform-specific paths."""

from __future__ import annotations

from pathlib import Path

import streamlist.paths as paths


class FakeAppDirs:
    """Minimal AppDirs stand-in used to control path roots during tests."""

    def __init__(self, root: Path) -> None:
        self.user_data_dir = str(root / "data")
        self.user_config_dir = str(root / "config")
        self.user_log_dir = str(root / "logs")


def test_paths_use_platformdirs_and_create_dirs(tmp_path, monkeypatch) -> None:
    def fake_app_dirs(app_name: str, appauthor: bool | None = None) -> FakeAppDirs:
        assert app_name == "streamlist"
        assert appauthor is False
        return FakeAppDirs(tmp_path)

    monkeypatch.setattr(paths, "AppDirs", fake_app_dirs)
    paths.get_app_dirs.cache_clear()
    try:
        assert paths.data_dir() == tmp_path / "data"
        assert paths.config_dir() == tmp_path / "config"
        assert paths.log_dir() == tmp_path / "logs"
        assert paths.db_path() == tmp_path / "data" / "catalog.sqlite"
        assert paths.state_path() == tmp_path / "config" / "player-state.json"

        for name in ("data", "config", "logs"):
            assert (tmp_path / name).is_dir()
    finally:
        paths.get_app_dirs.cache_clear()
