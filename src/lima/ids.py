from __future__ import annotations

import re
import uuid

# Whitespace, path separators, dots and NUL collapse into a single hyphen.
_SLUG_SEPARATORS = re.compile(r"[\s/\\.\x00]+")


def new_id() -> str:
    return str(uuid.uuid4())


def slugify(name: str) -> str:
    slug = _SLUG_SEPARATORS.sub("-", name.strip().lower())
    return slug.strip("-")
