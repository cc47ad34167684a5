from pathlib import Path

import yaml

from lima.config import load_config, write_default_config


def test_load_config_defaults_db_under_state_root(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "library_root": str(tmp_path / "lib"),
                "state_root": str(tmp_path / "state"),
                "paging": {"max_limit": 25},
            }
        )
    )
    cfg = load_config(path)
    assert cfg.db.path == tmp_path / "state" / "lima.sqlite3"
    assert cfg.db.pool_size == 5
    assert cfg.paging.default_limit == 50
    assert cfg.paging.max_limit == 25
    assert cfg.bundles_dir.is_dir()
    assert cfg.library_root.is_dir()


def test_overrides_merge_into_sections(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"state_root": str(tmp_path / "state"), "db": {"pool_size": 2}}))
    cfg = load_config(
        path,
        overrides={"library_root": str(tmp_path / "lib"), "db": {"busy_timeout_ms": 250}},
    )
    assert cfg.db.pool_size == 2
    assert cfg.db.busy_timeout_ms == 250
    assert cfg.library_root == tmp_path / "lib"


def test_write_default_config_keeps_existing_file(tmp_path: Path) -> None:
    path = tmp_path / "cfg" / "config.yaml"
    write_default_config(path)
    data = yaml.safe_load(path.read_text())
    assert data["paging"] == {"default_limit": 50, "max_limit": 200}

    path.write_text("ui:\n  show_banner: false\n")
    write_default_config(path)
    assert yaml.safe_load(path.read_text()) == {"ui": {"show_banner": False}}
