"""Keyset pagination for listing reads.

Pages are ordered by (updated_at DESC, id DESC). The cursor is the
(updated_at, id) pair of the last returned row; page N+1 is

    updated_at < cursor.updated_at
    OR (updated_at = cursor.updated_at AND id < cursor.id)

updated_at alone is not unique (bulk or same-millisecond writes collide), so
id breaks ties. That makes the ordering total and every row is visited exactly
once across pages, even when rows are inserted or updated between fetches
(an updated row moves to the head of the ordering, behind the cursor).
"""

import uuid
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from app.exceptions import ClientError

T = TypeVar("T")

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 100


class Cursor(BaseModel):
    id: uuid.UUID
    updated_at: datetime


def keyset_condition(
    updated_at_col: InstrumentedAttribute[datetime],
    id_col: InstrumentedAttribute[uuid.UUID],
    cursor: Cursor,
) -> Any:
    """Build the WHERE clause selecting rows strictly after `cursor`."""
    return or_(
        updated_at_col < cursor.updated_at,
        and_(updated_at_col == cursor.updated_at, id_col < cursor.id),
    )


def validate_limit(limit: int) -> int:
    if not MIN_PAGE_SIZE <= limit <= MAX_PAGE_SIZE:
        raise ClientError(f"limit must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}")
    return limit


async def fetch_keyset_page(
    session: AsyncSession,
    stmt: Select[tuple[T]],
    *,
    updated_at_col: InstrumentedAttribute[datetime],
    id_col: InstrumentedAttribute[uuid.UUID],
    limit: int,
    cursor: Cursor | None = None,
) -> tuple[list[T], Cursor | None]:
    """Fetch one page of ORM rows and the cursor of the next page.

    Fetches limit+1 rows; the extra row only signals that a next page exists
    and is trimmed from the result.

    Args:
        session: Database session.
        stmt: Base select (already filtered, e.g. by owner), without ordering.
        updated_at_col / id_col: Sort key columns of the selected entity.
        limit: Page size (1..100).
        cursor: Cursor returned by the previous page, or None for the first page.

    Returns:
        (items, next_cursor) where next_cursor is None on the last page.

    Raises:
        ClientError: If limit is out of range.
    """
    validate_limit(limit)

    if cursor is not None:
        stmt = stmt.where(keyset_condition(updated_at_col, id_col, cursor))

    stmt = stmt.order_by(updated_at_col.desc(), id_col.desc()).limit(limit + 1)
    rows = list((await session.execute(stmt)).scalars().all())

    has_more = len(rows) > limit
    items = rows[:limit]

    next_cursor = None
    if has_more:
        last = items[-1]
        next_cursor = Cursor(id=last.id, updated_at=last.updated_at)  # type: ignore[attr-defined]

    return items, next_cursor
