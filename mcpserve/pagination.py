"""Cursor based pagination over lists of named items."""

from __future__ import annotations

import base64
import bisect
from typing import Any, Iterable

from .protocol import MCPError


class InvalidCursorError(MCPError, ValueError):
    """A pagination cursor that is not valid base64."""

    def __init__(self, cursor: str, error: BaseException) -> None:
        super().__init__(f"invalid cursor {cursor!r}: {error}")
        self.cursor = cursor
        self.__cause__ = error


def encode_cursor(name: str) -> str:
    """Encode the name of the last item of a page as an opaque cursor."""
    return base64.b64encode(name.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> str:
    """Decode a cursor back into the item name it points after."""
    if not cursor:
        return ""
    try:
        raw = base64.b64decode(cursor, validate=True)
    except ValueError as exc:
        raise InvalidCursorError(cursor, exc) from exc
    return raw.decode("utf-8", errors="replace")


def paginate(items: Iterable[Any], cursor: str | None, limit: int | None) -> tuple[list[Any], str]:
    """Return one page of ``items`` (sorted by ``name``) and the cursor of the next page.

    The page starts after the item named by ``cursor``.  The next cursor is
    empty when there is no limit or the page came out shorter than the limit.
    """
    elements = list(items)
    start = 0
    if cursor:
        after = decode_cursor(cursor)
        start = bisect.bisect_right([element.name for element in elements], after)
    end = len(elements)
    if limit is not None and len(elements) > start + limit:
        end = start + limit
    page = elements[start:end]
    next_cursor = ""
    if limit is not None and page and len(page) >= limit:
        next_cursor = encode_cursor(page[-1].name)
    return page, next_cursor