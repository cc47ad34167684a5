from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lima.paths import config_root, default_db_path, default_library_root, default_state_root


@dataclass(slots=True)
class DatabaseConfig:
    path: Path = field(default_factory=default_db_path)
    pool_size: int = 5
    acquire_timeout: float = 10.0
    busy_timeout_ms: int = 5000


@dataclass(slots=True)
class PagingConfig:
    default_limit: int = 50
    max_limit: int = 200


@dataclass(slots=True)
class UIConfig:
    show_banner: bool = True


@dataclass(slots=True)
class AppConfig:
    library_root: Path = field(default_factory=default_library_root)
    state_root: Path = field(default_factory=default_state_root)
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    paging: PagingConfig = field(default_factory=PagingConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    @property
    def bundles_dir(self) -> Path:
        return self.state_root / "bundles"

    def ensure_dirs(self) -> None:
        self.library_root.mkdir(parents=True, exist_ok=True)
        self.bundles_dir.mkdir(parents=True, exist_ok=True)
        self.db.path.parent.mkdir(parents=True, exist_ok=True)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _to_config(data: dict[str, Any]) -> AppConfig:
    state_root = Path(data.get("state_root", str(default_state_root()))).expanduser()
    db_data = dict(data.get("db", {}))
    # The database follows the state root unless it is pinned explicitly.
    db_path = Path(db_data.pop("path", str(state_root / "lima.sqlite3"))).expanduser()
    return AppConfig(
        library_root=Path(data.get("library_root", str(default_library_root()))).expanduser(),
        state_root=state_root,
        db=DatabaseConfig(path=db_path, **db_data),
        paging=PagingConfig(**data.get("paging", {})),
        ui=UIConfig(**data.get("ui", {})),
    )


def default_config_path() -> Path:
    return config_root() / "config.yaml"


def load_config(config_path: Path | None = None, overrides: dict[str, Any] | None = None) -> AppConfig:
    path = config_path or default_config_path()
    base: dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text())
        if isinstance(loaded, dict):
            base = loaded
    if overrides:
        base = _merge(base, overrides)
    cfg = _to_config(base)
    cfg.ensure_dirs()
    return cfg


def write_default_config(path: Path | None = None) -> Path:
    target = path or default_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        return target
    state_root = default_state_root()
    target.write_text(
        yaml.safe_dump(
            {
                "library_root": str(default_library_root()),
                "state_root": str(state_root),
                "db": {
                    "path": str(state_root / "lima.sqlite3"),
                    "pool_size": 5,
                    "acquire_timeout": 10.0,
                    "busy_timeout_ms": 5000,
                },
                "paging": {"default_limit": 50, "max_limit": 200},
                "ui": {"show_banner": True},
            },
            sort_keys=False,
        )
    )
    return target
