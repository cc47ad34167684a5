from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import shutil
import sqlite3
from typing import Iterable

from lima.assets import get_asset, insert_asset, list_project_assets
from lima.compensation import UndoStack, remove_empty_dir
from lima.db import Database, fetch_all
from lima.errors import AssetNotFound, FilesystemFault, InvalidInput, ProjectExists, ProjectNotFound
from lima.files import describe_file, is_safe_filename
from lima.fts import match_expression
from lima.ids import new_id, slugify
from lima.models import CreatedProject, ProjectDetail, ProjectRow, ProjectTagRow, SearchProjectRow
from lima.pagination import LIST_ORDER, RANKED_ORDER, Cursor, keyset_predicate, ranked_predicate, require_ranked, where
from lima.tags import ensure_tags, set_project_tags
from lima.util.time import now_iso

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = "id, folder_path, name, description, main_image_id, created_at, updated_at, last_scanned_at"


@dataclass(slots=True)
class ScanStats:
    added: int = 0
    removed: int = 0
    scanned: int = 0


def _project(row: sqlite3.Row) -> ProjectRow:
    return ProjectRow(**{k: row[k] for k in row.keys() if k != "rank"})


def list_projects(conn: sqlite3.Connection, limit: int, cursor: Cursor | None = None) -> list[ProjectRow]:
    predicate, args = keyset_predicate(cursor)
    rows = conn.execute(
        f"""
        SELECT {PROJECT_COLUMNS}
        FROM projects
        {where(predicate)}
        ORDER BY {LIST_ORDER}
        LIMIT ?
        """,
        (*args, limit),
    ).fetchall()
    return [_project(r) for r in rows]


def search_projects(
    conn: sqlite3.Connection,
    query: str,
    limit: int,
    cursor: Cursor | None = None,
) -> list[SearchProjectRow]:
    require_ranked(cursor)
    expression = match_expression(query)
    predicate, args = ranked_predicate(cursor)
    rows = conn.execute(
        f"""
        WITH ranked AS (
          SELECT
            COALESCE(bm25(projects_fts), 0.0) AS rank,
            p.id, p.folder_path, p.name, p.description, p.main_image_id,
            p.created_at, p.updated_at, p.last_scanned_at
          FROM projects_fts
          JOIN projects p ON p.id = projects_fts.project_id
          WHERE projects_fts MATCH ?
        )
        SELECT *
        FROM ranked
        {where(predicate)}
        ORDER BY {RANKED_ORDER}
        LIMIT ?
        """,
        (expression, *args, limit),
    ).fetchall()
    return [SearchProjectRow(rank=float(r["rank"]), project=_project(r)) for r in rows]


def get_project(conn: sqlite3.Connection, project_id: str) -> ProjectRow:
    row = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
    if row is None:
        raise ProjectNotFound(project_id)
    return _project(row)


def get_project_tags(conn: sqlite3.Connection, project_id: str) -> list[ProjectTagRow]:
    rows = fetch_all(
        conn,
        """
        SELECT t.id, t.name, t.color
        FROM tags t
        JOIN project_tags pt ON pt.tag_id = t.id
        WHERE pt.project_id = ?
        ORDER BY t.name
        """,
        (project_id,),
    )
    return [ProjectTagRow(**r) for r in rows]


def get_project_detail(conn: sqlite3.Connection, project_id: str) -> ProjectDetail:
    project = get_project(conn, project_id)
    return ProjectDetail(
        project=project,
        tags=get_project_tags(conn, project_id),
        assets=list_project_assets(conn, project_id),
    )


def create_project(
    db: Database,
    library_root: Path,
    name: str,
    description: str = "",
    tags: Iterable[str] = (),
) -> CreatedProject:
    """Insert a project, its tags and its folder as one unit.

    A tag failure or a failed commit rolls the row back and removes the folder
    if this call created it.
    """
    if not name.strip():
        raise InvalidInput("project name must not be empty")
    folder_path = slugify(name)
    if not folder_path:
        raise InvalidInput(f"project name {name!r} does not yield a folder name", name=name)

    project_id = new_id()
    now = now_iso()
    tag_names = list(tags)
    project_dir = library_root / folder_path

    with db.transaction() as conn, UndoStack(f"create project {folder_path}") as undo:
        try:
            conn.execute(
                f"""
                INSERT INTO projects({PROJECT_COLUMNS})
                VALUES (?, ?, ?, ?, NULL, ?, ?, NULL)
                """,
                (project_id, folder_path, name, description, now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise ProjectExists(f"project folder already taken: {folder_path}", folder_path=folder_path) from exc

        if tag_names:
            set_project_tags(conn, project_id, ensure_tags(conn, tag_names, now))

        if not project_dir.is_dir():
            try:
                project_dir.mkdir(parents=True)
            except OSError as exc:
                raise FilesystemFault(f"failed to create project directory {project_dir}") from exc
            undo.push(f"remove {project_dir}", remove_empty_dir(project_dir))

        conn.commit()
        undo.release()

    logger.info("created project %s at %s", project_id, project_dir)
    return CreatedProject(id=project_id, folder_path=folder_path)


def update_project(
    conn: sqlite3.Connection,
    project_id: str,
    name: str | None = None,
    description: str | None = None,
    main_image_id: str | None = None,
    now: str | None = None,
) -> None:
    if name is None and description is None and main_image_id is None:
        raise InvalidInput("at least one field must be provided for update")
    if name is not None and not name.strip():
        raise InvalidInput("project name must not be empty")
    if main_image_id is not None and get_asset(conn, project_id, main_image_id) is None:
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            raise ProjectNotFound(project_id)
        raise AssetNotFound(project_id, main_image_id)

    cur = conn.execute(
        """
        UPDATE projects
        SET name = COALESCE(?, name),
            description = COALESCE(?, description),
            main_image_id = COALESCE(?, main_image_id),
            updated_at = ?
        WHERE id = ?
        """,
        (name, description, main_image_id, now or now_iso(), project_id),
    )
    if cur.rowcount == 0:
        raise ProjectNotFound(project_id)


def replace_project_tags(conn: sqlite3.Connection, project_id: str, names: Iterable[str]) -> list[str]:
    now = now_iso()
    cur = conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id))
    if cur.rowcount == 0:
        raise ProjectNotFound(project_id)
    tag_ids = ensure_tags(conn, names, now)
    set_project_tags(conn, project_id, tag_ids)
    return tag_ids


def delete_project(db: Database, library_root: Path, project_id: str) -> None:
    """Remove the project folder, then the row.

    The folder goes first because it cannot be restored; if that fails the
    transaction is never committed and the row stays.
    """
    with db.transaction() as conn:
        row = conn.execute("SELECT folder_path FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            raise ProjectNotFound(project_id)

        project_dir = library_root / str(row["folder_path"])
        try:
            shutil.rmtree(project_dir)
        except FileNotFoundError:
            logger.warning("project %s had no directory at %s", project_id, project_dir)
        except OSError as exc:
            raise FilesystemFault(f"failed to delete project directory {project_dir}") from exc

        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))

    logger.info("deleted project %s", project_id)


def scan_project(db: Database, library_root: Path, project_id: str) -> ScanStats:
    """Reconcile one project's rows with the files in its folder."""
    stats = ScanStats()
    now = now_iso()
    with db.transaction() as conn:
        project = get_project(conn, project_id)
        project_dir = library_root / project.folder_path
        known = {
            str(r["file_path"]): str(r["id"])
            for r in conn.execute("SELECT id, file_path FROM assets WHERE project_id = ?", (project_id,))
        }

        on_disk: set[str] = set()
        if project_dir.is_dir():
            for p in sorted(project_dir.iterdir()):
                if not p.is_file() or not is_safe_filename(p.name):
                    continue
                stats.scanned += 1
                on_disk.add(p.name)
                if p.name in known:
                    continue
                try:
                    facts = describe_file(p)
                except OSError as exc:
                    raise FilesystemFault(f"failed to stat {p}") from exc
                insert_asset(conn, project_id, p.name, facts.kind, facts.size, facts.mtime, facts.mime, now)
                stats.added += 1

        for file_path, asset_id in known.items():
            if file_path in on_disk:
                continue
            conn.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
            conn.execute(
                "UPDATE projects SET main_image_id = NULL WHERE id = ? AND main_image_id = ?",
                (project_id, asset_id),
            )
            stats.removed += 1

        conn.execute("UPDATE projects SET last_scanned_at = ? WHERE id = ?", (now, project_id))

    return stats
