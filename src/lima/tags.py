from __future__ import annotations

import sqlite3
from typing import Iterable

from lima.errors import InvalidInput, TagExists
from lima.ids import new_id
from lima.models import TagRow
from lima.pagination import LIST_ORDER, Cursor, keyset_predicate, where

TAG_COLUMNS = "id, name, color, created_at, updated_at"


def string_to_hex_color(name: str) -> str:
    h = 0
    for byte in name.encode("utf-8"):
        h = (byte + h * 31) & 0xFFFFFFFF
    return f"#{(h >> 16) & 0xFF:02X}{(h >> 8) & 0xFF:02X}{h & 0xFF:02X}"


def list_tags(conn: sqlite3.Connection, limit: int, cursor: Cursor | None = None) -> list[TagRow]:
    predicate, args = keyset_predicate(cursor)
    rows = conn.execute(
        f"""
        SELECT {TAG_COLUMNS}
        FROM tags
        {where(predicate)}
        ORDER BY {LIST_ORDER}
        LIMIT ?
        """,
        (*args, limit),
    ).fetchall()
    return [TagRow(**dict(r)) for r in rows]


def get_tag_by_name(conn: sqlite3.Connection, name: str) -> TagRow | None:
    row = conn.execute(f"SELECT {TAG_COLUMNS} FROM tags WHERE name = ?", (name,)).fetchone()
    if row is None:
        return None
    return TagRow(**dict(row))


def create_tag(conn: sqlite3.Connection, name: str, now: str) -> TagRow:
    if not name:
        raise InvalidInput("tag name must not be empty")
    tag = TagRow(id=new_id(), name=name, color=string_to_hex_color(name), created_at=now, updated_at=now)
    try:
        conn.execute(
            "INSERT INTO tags(id, name, color, created_at, updated_at) VALUES(?, ?, ?, ?, ?)",
            (tag.id, tag.name, tag.color, tag.created_at, tag.updated_at),
        )
    except sqlite3.IntegrityError as exc:
        raise TagExists(f"tag already exists: {name}", name=name) from exc
    return tag


def ensure_tags(conn: sqlite3.Connection, names: Iterable[str], now: str) -> list[str]:
    """Get-or-create a tag per distinct name, in first-seen order.

    Names are matched exactly; ``Red`` and ``red`` are different tags.
    """
    ids: list[str] = []
    seen: set[str] = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        existing = get_tag_by_name(conn, name)
        if existing is not None:
            ids.append(existing.id)
            continue
        ids.append(create_tag(conn, name, now).id)
    return ids


def set_project_tags(conn: sqlite3.Connection, project_id: str, tag_ids: Iterable[str]) -> None:
    conn.execute("DELETE FROM project_tags WHERE project_id = ?", (project_id,))
    conn.executemany(
        "INSERT OR IGNORE INTO project_tags(project_id, tag_id) VALUES(?, ?)",
        [(project_id, tag_id) for tag_id in tag_ids],
    )
