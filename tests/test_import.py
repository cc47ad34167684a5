import errno
import os
import sqlite3
from pathlib import Path

import pytest

from lima import importer
from lima.assets import upsert_asset
from lima.config import AppConfig, DatabaseConfig, UIConfig
from lima.errors import (
    IMPORT_ERRORS,
    BundleNotFound,
    FileConflict,
    FilesystemFault,
    MetaNotFound,
    MissingFile,
    ProjectNotFound,
    StorageFault,
)
from lima.service import LimaService


def _cfg(tmp_path: Path) -> AppConfig:
    return AppConfig(
        library_root=tmp_path / "library",
        state_root=tmp_path / "state",
        db=DatabaseConfig(path=tmp_path / "lima.sqlite3"),
        ui=UIConfig(show_banner=False),
    )


def _asset_count(svc: LimaService) -> int:
    with svc.db.connect() as conn:
        return conn.execute("SELECT COUNT(*) FROM assets").fetchone()[0]


def test_import_moves_files_and_records_rows(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    bundle = svc.bundle_create([("front.png", b"png"), ("knight.stl", b"solid knight")])

    result = svc.project_import(project["id"], bundle["id"])
    assert result["added"] == 2
    assert sorted(a["file_path"] for a in result["assets"]) == ["front.png", "knight.stl"]

    folder = cfg.library_root / "knight"
    assert (folder / "knight.stl").read_bytes() == b"solid knight"
    assert not (cfg.bundles_dir / bundle["id"]).exists()

    detail = svc.project_get(project["id"])
    assert {a["id"] for a in detail["assets"]} == {a["id"] for a in result["assets"]}


def test_import_conflict_rolls_back_every_moved_file(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    folder = cfg.library_root / "knight"
    (folder / "c.stl").write_bytes(b"original")

    bundle = svc.bundle_create([("a.png", b"a"), ("b.obj", b"b"), ("c.stl", b"new")])
    with pytest.raises(FileConflict) as excinfo:
        svc.project_import(project["id"], bundle["id"])
    assert excinfo.value.name == "c.stl"
    assert isinstance(excinfo.value, IMPORT_ERRORS)

    assert not (folder / "a.png").exists()
    assert not (folder / "b.obj").exists()
    assert (folder / "c.stl").read_bytes() == b"original"
    assert _asset_count(svc) == 0
    # The staging directory is kept so the failure can be inspected.
    assert (cfg.bundles_dir / bundle["id"] / "c.stl").exists()


def test_import_missing_staged_file(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    bundle = svc.bundle_create([("a.png", b"a"), ("b.png", b"b")])
    (cfg.bundles_dir / bundle["id"] / "b.png").unlink()

    with pytest.raises(MissingFile):
        svc.project_import(project["id"], bundle["id"])
    assert not (cfg.library_root / "knight" / "a.png").exists()
    assert _asset_count(svc) == 0


def test_import_commit_failure_undoes_moves(tmp_path: Path, failing_commit_db) -> None:
    cfg = _cfg(tmp_path)
    project = LimaService(cfg).project_create("Knight")

    svc = LimaService(cfg, db=failing_commit_db(cfg.db.path))
    bundle = svc.bundle_create([("a.png", b"a"), ("b.png", b"b")])
    with pytest.raises(StorageFault):
        svc.project_import(project["id"], bundle["id"])

    folder = cfg.library_root / "knight"
    assert sorted(p.name for p in folder.iterdir()) == []
    assert _asset_count(LimaService(cfg)) == 0


def test_import_precondition_failures(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")

    with pytest.raises(BundleNotFound):
        svc.project_import(project["id"], "no-such-bundle")

    bundle = svc.bundle_create([("a.png", b"a")])
    with pytest.raises(ProjectNotFound):
        svc.project_import("no-such-project", bundle["id"])
    assert (cfg.bundles_dir / bundle["id"] / "a.png").exists()

    (cfg.bundles_dir / bundle["id"] / "meta.json").unlink()
    with pytest.raises(MetaNotFound):
        svc.project_import(project["id"], bundle["id"])


def test_import_empty_manifest_is_a_no_op(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    bundle_dir = cfg.bundles_dir / "empty"
    bundle_dir.mkdir(parents=True)
    (bundle_dir / "meta.json").write_text('{"uploaded_at": "2024-01-01T00:00:00.000000Z", "files": []}')

    result = svc.project_import(project["id"], "empty")
    assert result["added"] == 0
    assert not bundle_dir.exists()


def test_reimport_updates_existing_row(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    first = svc.project_import(project["id"], svc.bundle_create([("a.png", b"a")])["id"])
    (cfg.library_root / "knight" / "a.png").unlink()

    second = svc.project_import(project["id"], svc.bundle_create([("a.png", b"bigger")])["id"])
    assert second["assets"][0]["id"] == first["assets"][0]["id"]
    assert second["assets"][0]["size_bytes"] == len(b"bigger")
    assert _asset_count(svc) == 1


def test_upload_sets_main_image(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    result = svc.project_upload(project["id"], [("cover.jpg", b"jpg"), ("knight.3mf", b"3mf")], main_image="cover.jpg")
    assert result["added"] == 2

    detail = svc.project_get(project["id"])
    cover = next(a for a in detail["assets"] if a["file_path"] == "cover.jpg")
    assert detail["project"]["main_image_id"] == cover["id"]
    assert list(cfg.bundles_dir.iterdir()) == []


def test_upload_to_missing_project_stages_nothing(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    with pytest.raises(ProjectNotFound):
        svc.project_upload("missing", [("a.png", b"a")])
    assert list(cfg.bundles_dir.iterdir()) == []


def test_move_file_falls_back_to_copy_across_devices(tmp_path: Path, monkeypatch) -> None:
    src = tmp_path / "src.bin"
    dst = tmp_path / "dst.bin"
    src.write_bytes(b"payload")

    def _cross_device(a, b):
        raise OSError(errno.EXDEV, os.strerror(errno.EXDEV))

    monkeypatch.setattr(importer.os, "rename", _cross_device)
    importer.move_file(src, dst)
    assert dst.read_bytes() == b"payload"
    assert not src.exists()


def test_import_move_failure_undoes_earlier_moves(tmp_path: Path, monkeypatch) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    bundle = svc.bundle_create([("a.png", b"a"), ("b.png", b"b"), ("c.png", b"c")])

    real_rename = os.rename

    def _rename(src, dst):
        if Path(src).name == "c.png":
            raise PermissionError(errno.EACCES, "Permission denied", str(src))
        return real_rename(src, dst)

    monkeypatch.setattr(importer.os, "rename", _rename)
    with pytest.raises(FilesystemFault) as excinfo:
        svc.project_import(project["id"], bundle["id"])
    monkeypatch.undo()

    assert isinstance(excinfo.value, IMPORT_ERRORS)
    assert list((cfg.library_root / "knight").iterdir()) == []
    assert _asset_count(svc) == 0


def test_import_row_failure_undoes_moves(tmp_path: Path, monkeypatch) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    bundle = svc.bundle_create([("a.png", b"a"), ("b.png", b"b"), ("c.png", b"c")])

    calls = []

    def _upsert(*args, **kwargs):
        calls.append(args[2])
        if len(calls) == 2:
            raise sqlite3.OperationalError("database is locked")
        return upsert_asset(*args, **kwargs)

    monkeypatch.setattr(importer, "upsert_asset", _upsert)
    with pytest.raises(StorageFault):
        svc.project_import(project["id"], bundle["id"])

    assert calls == ["a.png", "b.png"]
    assert list((cfg.library_root / "knight").iterdir()) == []
    assert _asset_count(svc) == 0


def test_failed_import_removes_folder_it_created(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    svc = LimaService(cfg)
    project = svc.project_create("Knight")
    (cfg.library_root / "knight").rmdir()
    bundle = svc.bundle_create([("a.png", b"a"), ("b.png", b"b")])
    (cfg.bundles_dir / bundle["id"] / "b.png").unlink()

    with pytest.raises(MissingFile):
        svc.project_import(project["id"], bundle["id"])
    assert not (cfg.library_root / "knight").exists()
    assert _asset_count(svc) == 0
