"""Keyset pagination over ``(updated_at DESC, id DESC)`` and ranked search.

A cursor is the exact sort key of the last row a client has seen. It travels
as unpadded URL-safe base64 of a compact JSON object ``{updated_at, id, rank?}``
and is opaque to everyone outside this module.

Plain listings resume strictly after ``(updated_at, id)`` using a row-value
comparison, so rows sharing a timestamp with the cursor are split by ``id``
instead of being skipped or repeated. Ranked listings sort by
``(rank ASC, updated_at DESC, id DESC)`` where a lower rank is a better match,
and resume after the full triple. A cursor without a rank cannot resume a
ranked listing.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lima.errors import InvalidCursor

LIST_ORDER = "updated_at DESC, id DESC"
RANKED_ORDER = "rank ASC, updated_at DESC, id DESC"


class Cursor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    updated_at: str = Field(min_length=1)
    id: str = Field(min_length=1)
    rank: float | None = Field(default=None, allow_inf_nan=False)


@dataclass
class Page:
    items: list[Any] = field(default_factory=list)
    next_cursor: str | None = None


def encode_cursor(cursor: Cursor) -> str:
    payload = cursor.model_dump_json(exclude_none=True).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> Cursor:
    if not token:
        raise InvalidCursor("empty cursor")
    padding = "=" * (-len(token) % 4)
    try:
        raw = base64.b64decode(token + padding, altchars=b"-_", validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise InvalidCursor("cursor is not valid base64") from exc
    try:
        return Cursor.model_validate_json(text)
    except ValidationError as exc:
        raise InvalidCursor("cursor payload is malformed") from exc


def parse_cursor(token: str | None) -> Cursor | None:
    if token is None:
        return None
    return decode_cursor(token)


def require_ranked(cursor: Cursor | None) -> Cursor | None:
    if cursor is not None and cursor.rank is None:
        raise InvalidCursor("cursor is missing rank")
    return cursor


def keyset_predicate(cursor: Cursor | None, alias: str = "") -> tuple[str, list[Any]]:
    if cursor is None:
        return "", []
    prefix = f"{alias}." if alias else ""
    return (
        f"({prefix}updated_at, {prefix}id) < (?, ?)",
        [cursor.updated_at, cursor.id],
    )


def ranked_predicate(cursor: Cursor | None) -> tuple[str, list[Any]]:
    cursor = require_ranked(cursor)
    if cursor is None:
        return "", []
    rank = cursor.rank
    return (
        "(rank > ?"
        " OR (rank = ? AND updated_at < ?)"
        " OR (rank = ? AND updated_at = ? AND id < ?))",
        [rank, rank, cursor.updated_at, rank, cursor.updated_at, cursor.id],
    )


def where(*clauses: str) -> str:
    active = [c for c in clauses if c]
    if not active:
        return ""
    return "WHERE " + " AND ".join(active)


def next_cursor(rows: Sequence[Any], key: Callable[[Any], Cursor]) -> str | None:
    if not rows:
        return None
    return encode_cursor(key(rows[-1]))
