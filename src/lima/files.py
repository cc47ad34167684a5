from __future__ import annotations

from dataclasses import dataclass
from hashlib import sha256
import logging
import mimetypes
from pathlib import Path

from lima.errors import InvalidFilename
from lima.util.time import iso_from_timestamp

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
MODEL_EXTENSIONS = {".stl", ".obj", ".3mf", ".fbx", ".glb", ".gltf"}

CHUNK_SIZE = 1024 * 1024


@dataclass(slots=True)
class FileFacts:
    size: int
    mtime: str
    mime: str
    kind: str


def check_filename(name: str | None) -> str:
    """Return ``name`` if it is safe to join under a managed directory.

    Rejects empty names, the ``.``/``..`` entries, anything containing ``..``,
    path separators of either flavour and NUL bytes.
    """
    if not name:
        raise InvalidFilename(name or "", "empty file name")
    if name in {".", ".."} or ".." in name:
        raise InvalidFilename(name, "path traversal")
    if "/" in name or "\\" in name:
        raise InvalidFilename(name, "path separator")
    if "\0" in name:
        raise InvalidFilename(name, "null byte")
    return name


def is_safe_filename(name: str | None) -> bool:
    try:
        check_filename(name)
    except InvalidFilename:
        return False
    return True


def extract_kind(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in MODEL_EXTENSIONS:
        return "model"
    return "other"


def guess_mime(filename: str) -> str:
    mime, _ = mimetypes.guess_type(filename, strict=False)
    return mime or "application/octet-stream"


def compute_checksum(path: Path) -> str:
    h = sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def describe_file(path: Path) -> FileFacts:
    st = path.stat()
    return FileFacts(
        size=st.st_size,
        mtime=iso_from_timestamp(st.st_mtime),
        mime=guess_mime(path.name),
        kind=extract_kind(path.name),
    )
