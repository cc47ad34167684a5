"""Move a staged bundle into a project folder and record it, all or nothing.

The filesystem and SQLite cannot share a transaction, so the import runs
inside one database transaction and keeps an undo log of every file it moved.
Any failure before the commit returns (including the commit itself) removes
those files newest-first and rolls the transaction back. After a successful
commit the emptied staging directory is removed best-effort; a leftover
directory is only logged.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
import shutil
import sqlite3
from typing import Iterable

from lima.assets import set_project_main_image, upsert_asset
from lima.bundles import BundleStore, UploadPart
from lima.compensation import UndoStack, remove_empty_dir, remove_file
from lima.db import Database
from lima.errors import BundleNotFound, FileConflict, FilesystemFault, MissingFile, StorageFault
from lima.models import ProjectAssetRow
from lima.projects import get_project

logger = logging.getLogger(__name__)


def move_file(src: Path, dst: Path) -> None:
    try:
        os.rename(src, dst)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    # Staging and library live on different volumes.
    try:
        shutil.copy2(src, dst)
    except OSError:
        dst.unlink(missing_ok=True)
        raise
    os.remove(src)


def import_from_bundle(
    db: Database,
    bundles: BundleStore,
    library_root: Path,
    project_id: str,
    bundle_id: str,
    main_image: str | None = None,
) -> list[ProjectAssetRow]:
    """Import every file listed in the bundle manifest into the project.

    Either every file ends up in the project folder with a matching asset row
    or none of them does. Files are never overwritten: an existing file with
    the same name fails the whole import with ``FileConflict``. When
    ``main_image`` names one of the imported files it becomes the project's
    main image in the same transaction.
    """
    bundle_dir = bundles.path_for(bundle_id)
    if not bundle_dir.is_dir():
        raise BundleNotFound(bundle_id)
    meta = bundles.read_meta(bundle_id)

    if not meta.files:
        bundles.discard(bundle_id)
        return []

    imported: list[ProjectAssetRow] = []
    with db.transaction() as conn, UndoStack(f"import bundle {bundle_id}") as undo:
        project = get_project(conn, project_id)
        project_dir = library_root / project.folder_path
        if not project_dir.is_dir():
            try:
                project_dir.mkdir(parents=True)
            except OSError as exc:
                raise FilesystemFault(f"failed to create project directory {project_dir}") from exc
            undo.push(f"remove {project_dir}", remove_empty_dir(project_dir))

        for entry in meta.files:
            src = bundle_dir / entry.name
            if not src.is_file():
                raise MissingFile(entry.name)

            dst = project_dir / entry.name
            if dst.exists():
                raise FileConflict(entry.name)

            try:
                move_file(src, dst)
            except OSError as exc:
                raise FilesystemFault(f"failed to move {entry.name}: {exc}", name=entry.name) from exc
            undo.push(f"remove {dst}", remove_file(dst))

            try:
                asset_id = upsert_asset(
                    conn,
                    project.id,
                    entry.name,
                    entry.kind,
                    entry.size,
                    entry.mtime,
                    entry.mime,
                    entry.checksum,
                    meta.uploaded_at,
                )
            except sqlite3.Error as exc:
                raise StorageFault(f"failed to record {entry.name}: {exc}", name=entry.name) from exc

            logger.debug("imported %s into project %s as %s", entry.name, project.id, asset_id)
            imported.append(
                ProjectAssetRow(id=asset_id, file_path=entry.name, kind=entry.kind, size_bytes=entry.size)
            )

        if main_image is not None:
            chosen = next((a for a in imported if a.file_path == main_image), None)
            if chosen is not None:
                set_project_main_image(conn, project.id, chosen.id, meta.uploaded_at)

        try:
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageFault(f"failed to commit import of bundle {bundle_id}: {exc}") from exc
        undo.release()

    if not bundles.discard(bundle_id):
        logger.warning("bundle %s imported but its staging directory was left behind", bundle_id)
    return imported


def upload_assets(
    db: Database,
    bundles: BundleStore,
    library_root: Path,
    project_id: str,
    parts: Iterable[UploadPart],
    main_image: str | None = None,
) -> list[ProjectAssetRow]:
    """Stage uploads and import them straight into a project."""
    with db.connect() as conn:
        get_project(conn, project_id)
    created = bundles.create(parts)
    try:
        return import_from_bundle(db, bundles, library_root, project_id, created.id, main_image=main_image)
    except Exception:
        bundles.discard(created.id)
        raise
