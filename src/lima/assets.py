from __future__ import annotations

import logging
from pathlib import Path
import sqlite3

from lima.db import Database, fetch_all, fetch_one
from lima.errors import AssetNotFound, FilesystemFault, ProjectNotFound
from lima.ids import new_id
from lima.models import AssetRecord, ProjectAssetRow
from lima.util.time import now_iso

logger = logging.getLogger(__name__)

ASSET_COLUMNS = (
    "id, project_id, file_path, kind, size_bytes, mtime, mime, file_hash, created_at, updated_at"
)


def get_project_folder_path(conn: sqlite3.Connection, project_id: str) -> str | None:
    row = fetch_one(conn, "SELECT folder_path FROM projects WHERE id = ?", (project_id,))
    return str(row["folder_path"]) if row else None


def get_asset(conn: sqlite3.Connection, project_id: str, asset_id: str) -> AssetRecord | None:
    row = conn.execute(
        f"SELECT {ASSET_COLUMNS} FROM assets WHERE id = ? AND project_id = ?",
        (asset_id, project_id),
    ).fetchone()
    if row is None:
        return None
    return AssetRecord(**dict(row))


def list_project_assets(conn: sqlite3.Connection, project_id: str) -> list[ProjectAssetRow]:
    rows = fetch_all(
        conn,
        """
        SELECT id, file_path, kind, size_bytes
        FROM assets
        WHERE project_id = ?
        ORDER BY file_path
        """,
        (project_id,),
    )
    return [ProjectAssetRow(**r) for r in rows]


def insert_asset(
    conn: sqlite3.Connection,
    project_id: str,
    file_path: str,
    kind: str,
    size_bytes: int,
    mtime: str | None,
    mime: str,
    now: str,
    file_hash: str | None = None,
) -> AssetRecord:
    record = AssetRecord(
        id=new_id(),
        project_id=project_id,
        file_path=file_path,
        kind=kind,
        size_bytes=size_bytes,
        mtime=mtime,
        mime=mime,
        file_hash=file_hash,
        created_at=now,
        updated_at=now,
    )
    conn.execute(
        f"""
        INSERT INTO assets({ASSET_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.id,
            record.project_id,
            record.file_path,
            record.kind,
            record.size_bytes,
            record.mtime,
            record.mime,
            record.file_hash,
            record.created_at,
            record.updated_at,
        ),
    )
    return record


def upsert_asset(
    conn: sqlite3.Connection,
    project_id: str,
    file_path: str,
    kind: str,
    size_bytes: int,
    mtime: str | None,
    mime: str,
    file_hash: str | None,
    now: str,
) -> str:
    """Insert or refresh the row for ``(project_id, file_path)`` and return its id."""
    conn.execute(
        f"""
        INSERT INTO assets({ASSET_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(project_id, file_path) DO UPDATE SET
          kind=excluded.kind,
          size_bytes=excluded.size_bytes,
          mtime=excluded.mtime,
          mime=excluded.mime,
          file_hash=excluded.file_hash,
          updated_at=excluded.updated_at
        """,
        (new_id(), project_id, file_path, kind, size_bytes, mtime, mime, file_hash, now, now),
    )
    row = conn.execute(
        "SELECT id FROM assets WHERE project_id = ? AND file_path = ?",
        (project_id, file_path),
    ).fetchone()
    return str(row["id"])


def set_project_main_image(conn: sqlite3.Connection, project_id: str, asset_id: str, now: str) -> None:
    if get_project_folder_path(conn, project_id) is None:
        raise ProjectNotFound(project_id)
    if get_asset(conn, project_id, asset_id) is None:
        raise AssetNotFound(project_id, asset_id)
    conn.execute(
        "UPDATE projects SET main_image_id = ?, updated_at = ? WHERE id = ?",
        (asset_id, now, project_id),
    )


def delete_asset(db: Database, library_root: Path, project_id: str, asset_id: str) -> None:
    """Remove an asset row and then its file.

    The row goes first because the transaction can still take it back; if the
    unlink then fails the transaction rolls back and row and file both remain.
    """
    with db.transaction() as conn:
        row = conn.execute(
            """
            SELECT p.folder_path, a.file_path
            FROM assets a
            JOIN projects p ON p.id = a.project_id
            WHERE a.id = ? AND a.project_id = ?
            """,
            (asset_id, project_id),
        ).fetchone()
        if row is None:
            raise AssetNotFound(project_id, asset_id)

        conn.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
        conn.execute(
            "UPDATE projects SET main_image_id = NULL, updated_at = ? WHERE id = ? AND main_image_id = ?",
            (now_iso(), project_id, asset_id),
        )

        path = library_root / str(row["folder_path"]) / str(row["file_path"])
        try:
            path.unlink()
        except FileNotFoundError:
            # Row without a file: dropping the row restores consistency.
            logger.warning("asset %s had no file at %s", asset_id, path)
        except OSError as exc:
            raise FilesystemFault(f"failed to delete asset file {path}", path=str(path)) from exc
