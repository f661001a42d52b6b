"""Path helpers for per-user app data."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from platformdirs import AppDirs

DEFAULT_APP_NAME = "streamlist"


@lru_cache(maxsize=4)
def get_app_dirs(app_name: str = DEFAULT_APP_NAME) -> AppDirs:
    return AppDirs(app_name, appauthor=False)


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def data_dir(app_name: str = DEFAULT_APP_NAME) -> Path:
    """Per-user data directory (catalog database), created on demand."""
    return _ensure_dir(Path(get_app_dirs(app_name).user_data_dir))


def config_dir(app_name: str = DEFAULT_APP_NAME) -> Path:
    """Per-user config directory (player settings), created on demand."""
    return _ensure_dir(Path(get_app_dirs(app_name).user_config_dir))


def log_dir(app_name: str = DEFAULT_APP_NAME) -> Path:
    return _ensure_dir(Path(get_app_dirs(app_name).user_log_dir))


def db_path(app_name: str = DEFAULT_APP_NAME) -> Path:
    """Return the SQLite catalog path."""
    return data_dir(app_name) / "catalog.sqlite"


def state_path(app_name: str = DEFAULT_APP_NAME) -> Path:
    return config_dir(app_name) / "player-state.json"
