from __future__ import annotations

import re

from lima.errors import InvalidInput

TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    return [t.lower() for t in TOKEN_RE.findall(text)]


def match_expression(query: str) -> str:
    """Build an FTS5 MATCH expression from free text.

    Every token becomes a quoted prefix term and terms are ANDed, so user
    punctuation can never reach the FTS5 query parser.
    """
    tokens = tokenize(query)
    if not tokens:
        raise InvalidInput("search query has no searchable terms", query=query)
    return " ".join(f'"{t}"*' for t in tokens)
