import io
import json
from pathlib import Path

import pytest

from lima.bundles import META_FILENAME, BundleStore
from lima.errors import (
    CREATE_BUNDLE_ERRORS,
    DELETE_BUNDLE_ERRORS,
    BundleNotFound,
    EmptyBundle,
    InvalidManifest,
    MetaNotFound,
)
from lima.files import compute_checksum, is_safe_filename


@pytest.mark.parametrize("name", ["", ".", "..", "a/b.png", "a\\b.png", "..png", "x\0y"])
def test_unsafe_filenames(name: str) -> None:
    assert not is_safe_filename(name)


@pytest.mark.parametrize("name", ["a.png", "model.v2.stl", "read me.txt", ".hidden"])
def test_safe_filenames(name: str) -> None:
    assert is_safe_filename(name)


def test_create_bundle_records_files_and_failures(tmp_path: Path) -> None:
    store = BundleStore(tmp_path / "bundles")
    created = store.create(
        [
            ("cover.png", b"\x89PNG fake"),
            ("../escape.png", b"nope"),
            (None, b"nameless"),
            ("body.stl", io.BytesIO(b"solid body")),
            (META_FILENAME, b"{}"),
        ]
    )
    assert created.files == ["cover.png", "body.stl"]
    assert created.failed_files == ["../escape.png", "", META_FILENAME]

    bundle_dir = tmp_path / "bundles" / created.id
    assert (bundle_dir / "body.stl").read_bytes() == b"solid body"
    assert not (tmp_path / "bundles" / "escape.png").exists()

    meta = json.loads((bundle_dir / META_FILENAME).read_text())
    by_name = {f["name"]: f for f in meta["files"]}
    assert by_name["cover.png"]["kind"] == "image"
    assert by_name["cover.png"]["mime"] == "image/png"
    assert by_name["body.stl"]["kind"] == "model"
    assert by_name["body.stl"]["size"] == len(b"solid body")
    assert by_name["body.stl"]["checksum"] == compute_checksum(bundle_dir / "body.stl")

    assert store.read_meta(created.id).files[0].name == "cover.png"


def test_duplicate_part_names_keep_the_first(tmp_path: Path) -> None:
    store = BundleStore(tmp_path / "bundles")
    created = store.create([("a.png", b"first"), ("a.png", b"second")])
    assert created.files == ["a.png"]
    assert created.failed_files == ["a.png"]
    assert (tmp_path / "bundles" / created.id / "a.png").read_bytes() == b"first"


def test_empty_bundle_leaves_no_directory(tmp_path: Path) -> None:
    root = tmp_path / "bundles"
    store = BundleStore(root)
    with pytest.raises(EmptyBundle) as excinfo:
        store.create([("../x", b"1"), ("", b"2")])
    assert isinstance(excinfo.value, CREATE_BUNDLE_ERRORS)
    assert list(root.iterdir()) == []


def test_delete_bundle(tmp_path: Path) -> None:
    store = BundleStore(tmp_path / "bundles")
    created = store.create([("a.png", b"a")])
    store.delete(created.id)
    assert not (tmp_path / "bundles" / created.id).exists()
    with pytest.raises(BundleNotFound) as excinfo:
        store.delete(created.id)
    assert isinstance(excinfo.value, DELETE_BUNDLE_ERRORS)
    with pytest.raises(BundleNotFound):
        store.delete("../outside")


def test_read_meta_failures(tmp_path: Path) -> None:
    store = BundleStore(tmp_path / "bundles")
    created = store.create([("a.png", b"a")])
    meta_path = tmp_path / "bundles" / created.id / META_FILENAME

    meta_path.write_text('{"uploaded_at": "x", "files": [{"name": "../evil", "size": 1, "mime": "x", "kind": "image"}]}')
    with pytest.raises(InvalidManifest):
        store.read_meta(created.id)

    meta_path.write_text("not json")
    with pytest.raises(InvalidManifest):
        store.read_meta(created.id)

    meta_path.unlink()
    with pytest.raises(MetaNotFound):
        store.read_meta(created.id)


def test_unexpected_error_removes_partial_bundle(tmp_path: Path) -> None:
    root = tmp_path / "bundles"
    store = BundleStore(root)

    def _parts():
        yield ("a.png", b"a")
        raise RuntimeError("client went away")

    with pytest.raises(RuntimeError):
        store.create(_parts())
    assert list(root.iterdir()) == []

    with pytest.raises(AttributeError):
        store.create([("a.png", b"a"), ("b.png", "not bytes")])
    assert list(root.iterdir()) == []
