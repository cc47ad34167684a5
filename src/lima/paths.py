from __future__ import annotations

from pathlib import Path
import os

APP_NAME = "lima"


def _xdg_root(env_var: str, fallback: Path) -> Path:
    xdg = os.environ.get(env_var)
    base = Path(xdg) if xdg else fallback
    root = base / APP_NAME
    root.mkdir(parents=True, exist_ok=True)
    return root


def config_root() -> Path:
    return _xdg_root("XDG_CONFIG_HOME", Path.home() / ".config")


def data_root() -> Path:
    return _xdg_root("XDG_DATA_HOME", Path.home() / ".local" / "share")


def default_library_root() -> Path:
    return data_root() / "library"


def default_state_root() -> Path:
    return data_root() / "state"


def default_db_path() -> Path:
    return default_state_root() / "lima.sqlite3"
