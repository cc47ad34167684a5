from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
from typing import BinaryIO, Iterable, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from lima.errors import BundleNotFound, EmptyBundle, FilesystemFault, InvalidFilename, InvalidManifest, MetaNotFound
from lima.files import CHUNK_SIZE, check_filename, compute_checksum, describe_file, is_safe_filename
from lima.ids import new_id
from lima.util.time import now_iso

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"

UploadData = Union[bytes, bytearray, BinaryIO]
UploadPart = tuple[Union[str, None], UploadData]


class FileMeta(BaseModel):
    name: str
    size: int = Field(ge=0)
    mtime: str | None = None
    mime: str
    kind: Literal["image", "model", "other"]
    checksum: str | None = None

    @field_validator("name")
    @classmethod
    def _safe_name(cls, value: str) -> str:
        try:
            check_filename(value)
        except InvalidFilename as exc:
            raise ValueError(exc.message) from None
        if value == META_FILENAME:
            raise ValueError(f"{META_FILENAME} is reserved")
        return value


class BundleMeta(BaseModel):
    uploaded_at: str
    files: list[FileMeta] = Field(default_factory=list)


@dataclass(slots=True)
class CreatedBundle:
    id: str
    meta: BundleMeta
    failed_files: list[str] = field(default_factory=list)

    @property
    def files(self) -> list[str]:
        return [f.name for f in self.meta.files]


def _write_part(dst: Path, data: UploadData) -> int:
    written = 0
    with dst.open("xb") as out:
        if isinstance(data, (bytes, bytearray)):
            out.write(data)
            return len(data)
        for chunk in iter(lambda: data.read(CHUNK_SIZE), b""):
            out.write(chunk)
            written += len(chunk)
    return written


class BundleStore:
    """Staging area for uploads waiting to be imported into a project.

    Each bundle is a directory named by a generated id holding the uploaded
    files plus a ``meta.json`` manifest describing them.
    """

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, bundle_id: str) -> Path:
        if not is_safe_filename(bundle_id):
            raise BundleNotFound(bundle_id)
        return self.root / bundle_id

    def _stage_parts(
        self,
        bundle_id: str,
        bundle_dir: Path,
        parts: Iterable[UploadPart],
    ) -> tuple[list[FileMeta], list[str]]:
        files: list[FileMeta] = []
        failed: list[str] = []
        for raw_name, data in parts:
            try:
                name = check_filename(raw_name)
                if name == META_FILENAME:
                    raise InvalidFilename(name, "reserved name")
            except InvalidFilename as exc:
                logger.error("skipping upload: %s", exc.message)
                failed.append(raw_name or "")
                continue

            dst = bundle_dir / name
            try:
                size = _write_part(dst, data)
                facts = describe_file(dst)
            except OSError as exc:
                logger.error("failed to stage %s: %s", dst, exc)
                failed.append(name)
                if not isinstance(exc, FileExistsError):
                    dst.unlink(missing_ok=True)
                continue

            try:
                checksum: str | None = compute_checksum(dst)
            except OSError as exc:
                logger.warning("no checksum for %s: %s", dst, exc)
                checksum = None

            logger.debug("staged %s (%d bytes) in bundle %s", name, size, bundle_id)
            files.append(
                FileMeta(
                    name=name,
                    size=size,
                    mtime=facts.mtime,
                    mime=facts.mime,
                    kind=facts.kind,
                    checksum=checksum,
                )
            )
        return files, failed

    def create(self, parts: Iterable[UploadPart]) -> CreatedBundle:
        """Stage every part into a fresh bundle directory.

        Unsafe names and per-file I/O errors are recorded in ``failed_files``.
        Any other exception removes the whole directory before propagating.
        """
        bundle_id = new_id()
        bundle_dir = self.root / bundle_id
        try:
            bundle_dir.mkdir(parents=True)
        except OSError as exc:
            logger.error("failed to create bundle directory %s: %s", bundle_dir, exc)
            raise FilesystemFault(f"failed to create bundle directory {bundle_dir}") from exc

        try:
            files, failed = self._stage_parts(bundle_id, bundle_dir, parts)
        except BaseException:
            shutil.rmtree(bundle_dir, ignore_errors=True)
            raise

        if not files:
            shutil.rmtree(bundle_dir, ignore_errors=True)
            raise EmptyBundle("no valid files were uploaded in the bundle", failed_files=failed)

        meta = BundleMeta(uploaded_at=now_iso(), files=files)
        try:
            (bundle_dir / META_FILENAME).write_text(meta.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("failed writing the meta file for bundle %s: %s", bundle_id, exc)
            shutil.rmtree(bundle_dir, ignore_errors=True)
            raise FilesystemFault(f"failed creating the meta file for bundle {bundle_id}") from exc

        return CreatedBundle(id=bundle_id, meta=meta, failed_files=failed)

    def read_meta(self, bundle_id: str) -> BundleMeta:
        meta_path = self.path_for(bundle_id) / META_FILENAME
        try:
            raw = meta_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise MetaNotFound(bundle_id) from None
        except OSError as exc:
            raise FilesystemFault(f"failed reading {meta_path}") from exc
        try:
            return BundleMeta.model_validate_json(raw)
        except ValidationError as exc:
            raise InvalidManifest(f"malformed meta file in bundle {bundle_id}", bundle_id=bundle_id) from exc

    def delete(self, bundle_id: str) -> None:
        bundle_dir = self.path_for(bundle_id)
        try:
            shutil.rmtree(bundle_dir)
        except FileNotFoundError:
            logger.warning("bundle not found for deletion: %s", bundle_id)
            raise BundleNotFound(bundle_id) from None
        except OSError as exc:
            logger.error("failed to delete bundle %s: %s", bundle_id, exc)
            raise FilesystemFault(f"failed to delete bundle {bundle_id}") from exc

    def discard(self, bundle_id: str) -> bool:
        """Remove a bundle directory, logging instead of raising on failure."""
        bundle_dir = self.root / bundle_id
        try:
            shutil.rmtree(bundle_dir)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("could not remove staging directory %s: %s", bundle_dir, exc)
            return False
        return True
